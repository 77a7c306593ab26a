"""
Transfer request domain types (``custody_kernel.domain.transfer``).

Responsibility
--------------
Frozen value objects for the dual-control approval workflow: the request
snapshot handed to callers and the status derived from its flags.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Lifecycle: ``PENDING -> EXECUTED`` only.  ``TRANSFER_TRANSITIONS``
  lists the single legal edge; EXECUTED is terminal.
* Identity: ``request_id >= 1``.  0 is reserved for "does not exist".
* Execution requires both approval flags.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from custody_kernel.domain.capabilities import ApprovalSlot


class TransferStatus(str, Enum):
    """Transfer request lifecycle states."""

    PENDING = "pending"
    EXECUTED = "executed"


TRANSFER_TRANSITIONS: dict[TransferStatus, frozenset[TransferStatus]] = {
    TransferStatus.PENDING: frozenset({TransferStatus.EXECUTED}),
    TransferStatus.EXECUTED: frozenset(),
}

# Reserved id meaning "no such request".
NULL_REQUEST_ID = 0


@dataclass(frozen=True)
class TransferRequest:
    """Immutable snapshot of a transfer request."""

    request_id: int
    requester: str
    destination: str
    amount: int
    primary_approved: bool = False
    executor_approved: bool = False
    executed: bool = False
    created_at: datetime | None = None
    executed_at: datetime | None = None
    executed_by: str | None = None

    @property
    def status(self) -> TransferStatus:
        return TransferStatus.EXECUTED if self.executed else TransferStatus.PENDING

    @property
    def is_fully_approved(self) -> bool:
        return self.primary_approved and self.executor_approved

    @property
    def ready_to_execute(self) -> bool:
        return self.is_fully_approved and not self.executed

    def is_approved_by(self, slot: ApprovalSlot) -> bool:
        if slot is ApprovalSlot.PRIMARY:
            return self.primary_approved
        return self.executor_approved

    def missing_slots(self) -> tuple[ApprovalSlot, ...]:
        return tuple(slot for slot in ApprovalSlot if not self.is_approved_by(slot))
