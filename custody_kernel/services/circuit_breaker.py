"""
CircuitBreaker -- global Running/Paused switch.

Responsibility:
    Gates every mutating custody operation.  Services call
    ``require_running(operation)`` as their first check.

Invariants enforced:
    - pause() and unpause() require the Pauser capability; the capability
      check runs before the state check.
    - A redundant transition is a hard failure, never a silent no-op.

Failure modes:
    - MissingCapabilityError: caller is not a Pauser.
    - SystemPausedError: pause() while paused, or any gated call while paused.
    - SystemNotPausedError: unpause() while running.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from custody_kernel.domain.capabilities import Capability
from custody_kernel.domain.dtos import BreakerState
from custody_kernel.exceptions import SystemNotPausedError, SystemPausedError
from custody_kernel.logging_config import get_logger
from custody_kernel.models.custody_state import load_custody_state
from custody_kernel.services.auditor_service import AuditorService
from custody_kernel.services.role_registry import RoleRegistry

logger = get_logger("services.circuit_breaker")


class CircuitBreaker:
    """Paused flag stored on the custody aggregate."""

    def __init__(
        self,
        session: Session,
        roles: RoleRegistry,
        auditor: AuditorService,
    ) -> None:
        self._session = session
        self._roles = roles
        self._auditor = auditor

    def state(self) -> BreakerState:
        if load_custody_state(self._session).paused:
            return BreakerState.PAUSED
        return BreakerState.RUNNING

    def is_paused(self) -> bool:
        return self.state() is BreakerState.PAUSED

    def require_running(self, operation: str) -> None:
        if load_custody_state(self._session).paused:
            raise SystemPausedError(operation)

    def pause(self, caller: str) -> BreakerState:
        self._roles.require(Capability.PAUSER, caller)
        state = load_custody_state(self._session)
        if state.paused:
            raise SystemPausedError("pause")

        state.paused = True
        self._session.flush()
        self._auditor.record_paused(caller, state.custody_account)

        logger.warning("system_paused", extra={"paused_by": caller})
        return BreakerState.PAUSED

    def unpause(self, caller: str) -> BreakerState:
        self._roles.require(Capability.PAUSER, caller)
        state = load_custody_state(self._session)
        if not state.paused:
            raise SystemNotPausedError()

        state.paused = False
        self._session.flush()
        self._auditor.record_unpaused(caller, state.custody_account)

        logger.info("system_unpaused", extra={"unpaused_by": caller})
        return BreakerState.RUNNING
