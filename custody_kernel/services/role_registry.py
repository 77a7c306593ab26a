"""
RoleRegistry -- capability sets (Admin, Executor, Pauser) per identity.

Responsibility:
    Answers "does identity P hold capability C" for every other service and
    records grants and revocations.  Holds no business logic of its own;
    callers consult it at the top of each mutating operation.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - A (capability, identity) pair exists at most once; granting a held
      capability is a no-op.
    - Revoking a capability the identity lacks is a no-op, which keeps
      executor rotation idempotent.
    - The primary controller's Admin capability is never revoked.

Failure modes:
    - MissingCapabilityError from require() / require_any().
    - ImmutabilityViolationError when revoking the primary controller's Admin.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from custody_kernel.domain.capabilities import Capability
from custody_kernel.domain.clock import Clock, SystemClock
from custody_kernel.exceptions import ImmutabilityViolationError, MissingCapabilityError
from custody_kernel.logging_config import get_logger
from custody_kernel.models.custody_state import find_custody_state
from custody_kernel.models.role_grant import RoleGrantModel
from custody_kernel.services.auditor_service import AuditorService

logger = get_logger("services.role_registry")


class RoleRegistry:
    """Capability grants backed by the ``role_grants`` table."""

    def __init__(
        self,
        session: Session,
        auditor: AuditorService,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._auditor = auditor
        self._clock = clock or SystemClock()

    def _find(self, capability: Capability, identity: str) -> RoleGrantModel | None:
        return self._session.execute(
            select(RoleGrantModel).where(
                RoleGrantModel.capability == capability.value,
                RoleGrantModel.identity == identity,
            )
        ).scalar_one_or_none()

    def has(self, capability: Capability, identity: str) -> bool:
        if not identity:
            return False
        return self._find(capability, identity) is not None

    def has_any(self, capabilities: Iterable[Capability], identity: str) -> bool:
        return any(self.has(capability, identity) for capability in capabilities)

    def require(self, capability: Capability, identity: str) -> None:
        """Raise MissingCapabilityError unless ``identity`` holds ``capability``."""
        self.require_any((capability,), identity)

    def require_any(self, capabilities: Iterable[Capability], identity: str) -> None:
        capabilities = tuple(capabilities)
        if not self.has_any(capabilities, identity):
            raise MissingCapabilityError(
                identity, tuple(capability.value for capability in capabilities),
            )

    def holders(self, capability: Capability) -> tuple[str, ...]:
        """Identities holding ``capability``, oldest grant first."""
        rows = self._session.execute(
            select(RoleGrantModel.identity)
            .where(RoleGrantModel.capability == capability.value)
            .order_by(RoleGrantModel.granted_at, RoleGrantModel.identity)
        ).scalars()
        return tuple(rows)

    def capabilities_of(self, identity: str) -> frozenset[Capability]:
        if not identity:
            return frozenset()
        rows = self._session.execute(
            select(RoleGrantModel.capability).where(RoleGrantModel.identity == identity)
        ).scalars()
        return frozenset(Capability(value) for value in rows)

    def grant(self, capability: Capability, identity: str, granted_by: str) -> bool:
        """Grant ``capability``; returns False when it was already held."""
        if self._find(capability, identity) is not None:
            return False

        self._session.add(
            RoleGrantModel(
                capability=capability.value,
                identity=identity,
                granted_by=granted_by,
                granted_at=self._clock.now(),
            )
        )
        self._session.flush()
        self._auditor.record_capability_granted(granted_by, capability.value, identity)

        logger.info(
            "capability_granted",
            extra={"capability": capability.value, "identity": identity},
        )
        return True

    def revoke(self, capability: Capability, identity: str, revoked_by: str) -> bool:
        """Revoke ``capability``; returns False when it was not held."""
        grant = self._find(capability, identity)
        if grant is None:
            return False

        if capability is Capability.ADMIN:
            state = find_custody_state(self._session)
            if state is not None and state.primary_controller == identity:
                raise ImmutabilityViolationError(
                    entity_type="RoleGrant",
                    entity_id=f"{capability.value}:{identity}",
                    reason="The primary controller's Admin capability is permanent",
                )

        self._session.delete(grant)
        self._session.flush()
        self._auditor.record_capability_revoked(revoked_by, capability.value, identity)

        logger.info(
            "capability_revoked",
            extra={"capability": capability.value, "identity": identity},
        )
        return True
