"""
Configuration Loader (``custody_config.loader``).

Responsibility
--------------
Loads a custody YAML file and parses it into the frozen
``custody_config.schema`` dataclasses.  The runtime entry point is
``custody_config.get_active_config()``; nothing else should read
configuration files.

Invariants enforced
-------------------
* Missing required keys raise ``KeyError``; malformed values raise
  ``ValueError``.  There are no silent defaults for identities.
* ``compute_checksum`` is a deterministic SHA-256 of the source mapping.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from custody_config.schema import (
    CustodyConfiguration,
    OracleDef,
    PrincipalsDef,
    ThresholdDef,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any) -> Decimal:
    """Parse a Decimal from a YAML scalar; floats go through str()."""
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Cannot parse decimal from {value!r}") from exc


def parse_principals(data: dict[str, Any]) -> PrincipalsDef:
    return PrincipalsDef(
        primary_controller=str(data["primary_controller"]),
        executor=str(data["executor"]),
        restricted_depositor=str(data["restricted_depositor"]),
        custody_account=str(data["custody_account"]),
        asset_contract=str(data["asset_contract"]),
        oracle=str(data["oracle"]),
    )


def parse_threshold(data: dict[str, Any]) -> ThresholdDef:
    """Parse a ThresholdDef; ``baseline`` is in smallest units."""
    return ThresholdDef(
        baseline=int(data["baseline"]),
        target_fiat_value=parse_decimal(data["target_fiat_value"]),
        price_decimals=int(data.get("price_decimals", 6)),
        native_decimals=int(data.get("native_decimals", 6)),
    )


def parse_oracle(data: dict[str, Any]) -> OracleDef:
    return OracleDef(
        job_id=str(data["job_id"]),
        fee=int(data.get("fee", 0)),
        allow_admin_fulfillment=bool(data.get("allow_admin_fulfillment", False)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_configuration(data: dict[str, Any]) -> CustodyConfiguration:
    """Parse a whole configuration mapping."""
    return CustodyConfiguration(
        config_id=str(data["config_id"]),
        version=int(data.get("version", 1)),
        principals=parse_principals(data["principals"]),
        threshold=parse_threshold(data["threshold"]),
        oracle=parse_oracle(data["oracle"]),
        database_url=str(data.get("database_url", "sqlite://")),
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> CustodyConfiguration:
    """Load and parse the YAML file at ``path``."""
    return parse_configuration(load_yaml_file(path))
