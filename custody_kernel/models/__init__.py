"""ORM models for the custody kernel."""

from custody_kernel.models.audit_event import AuditAction, AuditEvent
from custody_kernel.models.custody_state import (
    CustodyStateModel,
    find_custody_state,
    load_custody_state,
)
from custody_kernel.models.oracle_request import OracleRequestModel
from custody_kernel.models.role_grant import RoleGrantModel
from custody_kernel.models.sequence import SequenceCounter
from custody_kernel.models.transfer_request import TransferRequestModel

__all__ = [
    "AuditAction",
    "AuditEvent",
    "CustodyStateModel",
    "OracleRequestModel",
    "RoleGrantModel",
    "SequenceCounter",
    "TransferRequestModel",
    "find_custody_state",
    "load_custody_state",
]
