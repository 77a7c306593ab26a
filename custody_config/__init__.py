"""
custody_config -- single public entrypoint for custody configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a validated, frozen
    ``CustodyConfiguration``.

Architecture position:
    Configuration -- sits beside ``custody_kernel``.  The kernel never
    imports from this package at runtime; ``CustodyOrchestrator.from_config``
    reads the returned object's attributes.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` -- validation failed; the message lists every error.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``CUSTODY_CONFIG_TRACE`` log entry with the config_id, version and
    checksum, tying operations back to the configuration that governed them.
"""

from __future__ import annotations

import logging
from pathlib import Path

from custody_config.loader import load_configuration
from custody_config.schema import CustodyConfiguration
from custody_config.validator import validate_configuration

_logger = logging.getLogger("custody_kernel.config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | None = None) -> CustodyConfiguration:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to custody_config/sets/default.yaml.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If configuration validation fails.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_FILE
    if not config_path.is_file():
        raise FileNotFoundError(f"Custody configuration not found: {config_path}")

    config = load_configuration(config_path)

    validation = validate_configuration(config)
    if not validation.is_valid:
        raise ValueError(
            "Configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("custody_config_warning", extra={"warning": warning})

    _logger.info(
        "CUSTODY_CONFIG_TRACE",
        extra={
            "trace_type": "CUSTODY_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "primary_controller": config.principals.primary_controller,
            "baseline_threshold": config.threshold.baseline,
        },
    )
    return config


__all__ = [
    "CustodyConfiguration",
    "get_active_config",
]
