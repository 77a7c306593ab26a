"""
CustodyConfiguration schema.

The human-authored, reviewable description of one custody deployment:
who the principals are, how the redirection threshold is derived, and how
the price oracle is addressed.  YAML files are parsed into these frozen
types by the loader.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PrincipalsDef:
    """Ledger identities fixed for the lifetime of a deployment.

    ``executor`` is only the initial holder; it can be rotated later.
    """

    primary_controller: str
    executor: str
    restricted_depositor: str
    custody_account: str
    asset_contract: str
    oracle: str


# ---------------------------------------------------------------------------
# Threshold and oracle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ThresholdDef:
    """Inputs of the redirection threshold formula."""

    baseline: int  # smallest units
    target_fiat_value: Decimal
    price_decimals: int = 6
    native_decimals: int = 6


@dataclass(frozen=True)
class OracleDef:
    job_id: str
    fee: int = 0
    allow_admin_fulfillment: bool = False


# ---------------------------------------------------------------------------
# Top-level configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CustodyConfiguration:
    """One deployment's configuration.

    Attributes:
        config_id: Unique identifier (e.g., "nile-custody")
        version: Configuration version number
        principals: Ledger identities
        threshold: Threshold formula inputs
        oracle: Price oracle addressing
        database_url: SQLAlchemy URL of the custody store
        checksum: SHA-256 of the canonical serialization of the source
    """

    config_id: str
    version: int
    principals: PrincipalsDef
    threshold: ThresholdDef
    oracle: OracleDef
    database_url: str
    checksum: str
