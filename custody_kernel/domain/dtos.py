"""
Read-side and result DTOs (``custody_kernel.domain.dtos``).

Frozen dataclasses returned by the orchestrator and selectors.  Callers
never receive ORM instances.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class BreakerState(str, Enum):
    """Circuit breaker states."""

    RUNNING = "running"
    PAUSED = "paused"


@dataclass(frozen=True)
class CustodySnapshot:
    """Point-in-time view of the custody aggregate."""

    primary_controller: str
    executor: str | None
    restricted_depositor: str
    custody_account: str
    state: BreakerState
    threshold: int
    cumulative_redirected: int
    redirect_count: int
    last_event_at: datetime | None

    @property
    def paused(self) -> bool:
        return self.state is BreakerState.PAUSED


@dataclass(frozen=True)
class RedirectionReceipt:
    """Result of a successful inbound redirection."""

    sender: str
    recipient: str
    amount: int
    threshold: int
    cumulative_redirected: int
    redirected_at: datetime


class OracleRequestStatus(str, Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"


@dataclass(frozen=True)
class OracleRequestInfo:
    """Snapshot of an oracle request and, once fulfilled, its outcome."""

    correlation_id: str
    requested_by: str
    status: OracleRequestStatus
    requested_at: datetime | None = None
    price_sample: int | None = None
    resulting_threshold: int | None = None
    fulfilled_by: str | None = None
    fulfilled_at: datetime | None = None
    manual: bool = False


@dataclass(frozen=True)
class ThresholdChange:
    """Outcome of set_threshold / fulfill."""

    previous: int
    current: int
    source: str
    correlation_id: str | None = None


@dataclass(frozen=True)
class WithdrawalReceipt:
    """Both legs of withdraw_all."""

    recipient: str
    value_amount: int
    asset_amount: int


@dataclass(frozen=True)
class ExecutorRotation:
    previous: str | None
    current: str


@dataclass(frozen=True)
class EmergencySweepSignal:
    """Instruction for the out-of-band sweep process; nothing moves here."""

    depositor: str
    observed_balance: int
    recipient: str
    signalled_by: str
    signalled_at: datetime
