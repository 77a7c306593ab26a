"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The services already refuse illegal transitions before they touch a row.
These listeners are the second line: any code path that reaches the ORM
(a bug, a maintenance script, a future service) is still stopped before SQL
is sent.

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Rule
--------------------|----------------------------------------------------------
TransferRequest     | request_seq/requester/destination/amount never change;
                    | an executed row never changes; rows are never deleted
AuditEvent          | append-only: no UPDATE, no DELETE
CustodyState        | principals and singleton key never change; never deleted
RoleGrant           | the primary controller's Admin grant is never deleted

===============================================================================
DESIGN DECISIONS
===============================================================================

1. "WAS EXECUTED", NOT "IS EXECUTED".
   The workflow itself sets executed=True, so the PENDING -> EXECUTED flush
   must pass.  The listener inspects attribute history and rejects only
   updates whose committed value was already True.

2. INLINE IMPORTS avoid circular imports between db/ and models/.

===============================================================================
USAGE
===============================================================================

    register_immutability_listeners()    # once, at startup (idempotent)
    unregister_immutability_listeners()  # tests only
"""

from sqlalchemy import event, inspect

from custody_kernel.exceptions import ImmutabilityViolationError
from custody_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _changed_fields(target, fields) -> list[str]:
    """Return the subset of ``fields`` whose committed value is being replaced."""
    state = inspect(target)
    changed = []
    for name in fields:
        history = state.attrs[name].history
        if history.deleted and history.added and history.deleted[0] != history.added[0]:
            changed.append(name)
    return changed


def _block(entity_type: str, entity_id: str, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


# =============================================================================
# TransferRequest
# =============================================================================


def _check_transfer_request_immutability(mapper, connection, target):
    from custody_kernel.models.transfer_request import (
        TRANSFER_IMMUTABLE_FIELDS,
        TransferRequestModel,
    )

    if not isinstance(target, TransferRequestModel):
        return

    entity_id = str(target.request_seq)

    changed = _changed_fields(target, sorted(TRANSFER_IMMUTABLE_FIELDS))
    if changed:
        _block(
            "TransferRequest", entity_id, "UPDATE",
            f"Fields {', '.join(changed)} are fixed at creation",
        )

    executed_history = inspect(target).attrs.executed.history
    was_executed = bool(executed_history.deleted and executed_history.deleted[0]) or (
        bool(executed_history.unchanged and executed_history.unchanged[0])
    )
    if was_executed:
        _block(
            "TransferRequest", entity_id, "UPDATE",
            "Executed transfer requests cannot be modified",
        )

    # Flags only ever move False -> True.
    for flag in ("primary_approved", "executor_approved", "executed"):
        history = inspect(target).attrs[flag].history
        if history.deleted and history.deleted[0] and history.added and not history.added[0]:
            _block(
                "TransferRequest", entity_id, "UPDATE",
                f"{flag} cannot be reset once set",
            )


def _check_transfer_request_delete(mapper, connection, target):
    from custody_kernel.models.transfer_request import TransferRequestModel

    if not isinstance(target, TransferRequestModel):
        return

    _block(
        "TransferRequest", str(target.request_seq), "DELETE",
        "Transfer requests are terminated by execution, never deleted",
    )


# =============================================================================
# AuditEvent
# =============================================================================


def _check_audit_event_immutability(mapper, connection, target):
    from custody_kernel.models.audit_event import AuditEvent

    if not isinstance(target, AuditEvent):
        return

    _block(
        "AuditEvent", str(target.id), "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_audit_event_delete(mapper, connection, target):
    from custody_kernel.models.audit_event import AuditEvent

    if not isinstance(target, AuditEvent):
        return

    _block("AuditEvent", str(target.id), "DELETE", "Audit events cannot be deleted")


# =============================================================================
# CustodyState
# =============================================================================


def _check_custody_state_immutability(mapper, connection, target):
    from custody_kernel.models.custody_state import (
        IMMUTABLE_PRINCIPAL_FIELDS,
        CustodyStateModel,
    )

    if not isinstance(target, CustodyStateModel):
        return

    changed = _changed_fields(target, sorted(IMMUTABLE_PRINCIPAL_FIELDS))
    if changed:
        _block(
            "CustodyState", target.singleton_key, "UPDATE",
            f"Principal fields {', '.join(changed)} are immutable",
        )


def _check_custody_state_delete(mapper, connection, target):
    from custody_kernel.models.custody_state import CustodyStateModel

    if not isinstance(target, CustodyStateModel):
        return

    _block("CustodyState", target.singleton_key, "DELETE", "Custody state cannot be deleted")


# =============================================================================
# RoleGrant
# =============================================================================


def _check_role_grant_delete(mapper, connection, target):
    from sqlalchemy import select

    from custody_kernel.domain.capabilities import Capability
    from custody_kernel.models.custody_state import CustodyStateModel
    from custody_kernel.models.role_grant import RoleGrantModel

    if not isinstance(target, RoleGrantModel):
        return
    if target.capability != Capability.ADMIN.value:
        return

    primary = connection.execute(
        select(CustodyStateModel.primary_controller)
    ).scalar_one_or_none()
    if primary is not None and primary == target.identity:
        _block(
            "RoleGrant", f"{target.capability}:{target.identity}", "DELETE",
            "The primary controller's Admin capability is permanent",
        )


_LISTENERS = (
    ("TransferRequestModel", "before_update", _check_transfer_request_immutability),
    ("TransferRequestModel", "before_delete", _check_transfer_request_delete),
    ("AuditEvent", "before_update", _check_audit_event_immutability),
    ("AuditEvent", "before_delete", _check_audit_event_delete),
    ("CustodyStateModel", "before_update", _check_custody_state_immutability),
    ("CustodyStateModel", "before_delete", _check_custody_state_delete),
    ("RoleGrantModel", "before_delete", _check_role_grant_delete),
)


def _models() -> dict:
    from custody_kernel.models.audit_event import AuditEvent
    from custody_kernel.models.custody_state import CustodyStateModel
    from custody_kernel.models.role_grant import RoleGrantModel
    from custody_kernel.models.transfer_request import TransferRequestModel

    return {
        "AuditEvent": AuditEvent,
        "CustodyStateModel": CustodyStateModel,
        "RoleGrantModel": RoleGrantModel,
        "TransferRequestModel": TransferRequestModel,
    }


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; a listener already present is skipped.
    """
    models = _models()
    for model_name, event_name, listener_fn in _LISTENERS:
        target = models[model_name]
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate the rules.
    """
    models = _models()
    for model_name, event_name, listener_fn in _LISTENERS:
        target = models[model_name]
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)
