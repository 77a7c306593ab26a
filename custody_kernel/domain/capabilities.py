"""
Capability and approval-slot types (``custody_kernel.domain.capabilities``).

Responsibility
--------------
Names the three capabilities the role registry hands out and the two
approval slots a transfer request carries.  Pure declarations plus the one
rule that maps a caller's capabilities onto a slot.

Architecture position
---------------------
**Kernel domain layer** -- ZERO I/O.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable


class Capability(str, Enum):
    """Capabilities held by principals."""

    ADMIN = "admin"
    EXECUTOR = "executor"
    PAUSER = "pauser"


# Capabilities that make an identity a dual-control approver.
APPROVER_CAPABILITIES: tuple[Capability, ...] = (
    Capability.ADMIN,
    Capability.EXECUTOR,
)

# The primary controller is granted these at bootstrap and never loses Admin.
PRIMARY_CONTROLLER_CAPABILITIES: tuple[Capability, ...] = (
    Capability.ADMIN,
    Capability.PAUSER,
)


class ApprovalSlot(str, Enum):
    """The two approval flags of a transfer request."""

    PRIMARY = "primary"
    EXECUTOR = "executor"


def slot_for(capabilities: Iterable[Capability]) -> ApprovalSlot | None:
    """Map a caller's capabilities to the slot it approves.

    Admin wins when one identity holds both approver capabilities, so a
    single identity can never fill both slots.
    """
    held = set(capabilities)
    if Capability.ADMIN in held:
        return ApprovalSlot.PRIMARY
    if Capability.EXECUTOR in held:
        return ApprovalSlot.EXECUTOR
    return None
