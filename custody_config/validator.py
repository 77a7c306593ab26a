"""
Configuration Validator (``custody_config.validator``).

Responsibility
--------------
Checks a ``CustodyConfiguration`` before an orchestrator is built from it.

Invariants enforced
-------------------
* Every principal identity is non-empty.
* The primary controller, executor, restricted depositor and custody
  account are four distinct identities.
* baseline > 0, target_fiat_value > 0, decimals >= 0.
* The oracle job id is non-empty and the fee is not negative.

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``) -> the
  configuration MUST NOT be used.
* Warnings -> usable, but should be reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from custody_config.schema import CustodyConfiguration


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    ``is_valid`` returns ``True`` only when ``errors`` is empty.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


def validate_configuration(config: CustodyConfiguration) -> ConfigValidationResult:
    """Validate a parsed configuration."""
    result = ConfigValidationResult()

    _validate_principals(config, result)
    _validate_threshold(config, result)
    _validate_oracle(config, result)

    return result


def _validate_principals(config: CustodyConfiguration, result: ConfigValidationResult) -> None:
    principals = config.principals
    for name in (
        "primary_controller",
        "executor",
        "restricted_depositor",
        "custody_account",
        "asset_contract",
        "oracle",
    ):
        if not getattr(principals, name).strip():
            result.add_error(f"principals.{name} must not be empty")

    seen: dict[str, str] = {}
    for name in ("primary_controller", "executor", "restricted_depositor", "custody_account"):
        value = getattr(principals, name)
        if not value:
            continue
        if value in seen:
            result.add_error(f"principals.{name} duplicates principals.{seen[value]} ({value})")
        else:
            seen[value] = name

    if principals.oracle == principals.primary_controller and not config.oracle.allow_admin_fulfillment:
        result.add_warning(
            "principals.oracle is the primary controller; "
            "consider allow_admin_fulfillment instead"
        )


def _validate_threshold(config: CustodyConfiguration, result: ConfigValidationResult) -> None:
    threshold = config.threshold
    if threshold.baseline <= 0:
        result.add_error(f"threshold.baseline must be positive, got {threshold.baseline}")
    if threshold.target_fiat_value <= 0:
        result.add_error(
            f"threshold.target_fiat_value must be positive, got {threshold.target_fiat_value}"
        )
    if threshold.price_decimals < 0:
        result.add_error("threshold.price_decimals must be >= 0")
    if threshold.native_decimals < 0:
        result.add_error("threshold.native_decimals must be >= 0")


def _validate_oracle(config: CustodyConfiguration, result: ConfigValidationResult) -> None:
    if not config.oracle.job_id.strip():
        result.add_error("oracle.job_id must not be empty")
    if config.oracle.fee < 0:
        result.add_error(f"oracle.fee must not be negative, got {config.oracle.fee}")
