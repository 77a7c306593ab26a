"""
AuditorService -- the custody event log and its hash chain.

Responsibility:
    Every mutating custody operation "emits" an event by appending a
    hash-chained ``AuditEvent`` row through this service.  Provides chain
    validation for tamper detection and per-entity traces for review.

Architecture position:
    Kernel > Services -- imperative shell, called by every other service.

Invariants enforced:
    - Sequence monotonicity via SequenceService.
    - Chain integrity: ``hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash)``.
    - Append-only: audit rows are never modified or deleted (ORM listeners).

Failure modes:
    - AuditChainBrokenError: a recomputed hash or a prev_hash link does not
      match what is stored.

Audit relevance:
    This IS the event log.  Events recorded inside an operation that later
    fails are rolled back with it; only committed operations leave events.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from custody_kernel.domain.clock import Clock, SystemClock
from custody_kernel.exceptions import AuditChainBrokenError
from custody_kernel.logging_config import get_logger
from custody_kernel.models.audit_event import AuditAction, AuditEvent
from custody_kernel.services.sequence_service import SequenceService
from custody_kernel.utils.hashing import hash_audit_event, hash_payload

logger = get_logger("services.auditor")

CUSTODY_ENTITY = "Custody"
TRANSFER_ENTITY = "TransferRequest"
ORACLE_ENTITY = "OracleRequest"
ROLE_ENTITY = "Role"


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: str
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit events of one entity, in emission order."""

    entity_type: str
    entity_id: str
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[AuditAction, ...]:
        return tuple(entry.action for entry in self.entries)

    @property
    def first_action(self) -> AuditAction | None:
        return self.entries[0].action if self.entries else None

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


def _to_entry(event: AuditEvent) -> AuditTraceEntry:
    return AuditTraceEntry(
        seq=event.seq,
        action=AuditAction(event.action),
        occurred_at=event.occurred_at,
        actor_id=event.actor_id,
        payload=event.payload or {},
        hash=event.hash,
    )


class AuditorService:
    """
    Service for creating and validating custody events.

    Contract:
        Domain-specific ``record_*`` methods build the payload; every one of
        them funnels through ``_create_audit_event``.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        """Get the hash of the most recent audit event."""
        last_event = self._session.execute(
            select(AuditEvent)
            .order_by(AuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

        return last_event.hash if last_event else None

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: str,
        action: AuditAction,
        actor_id: str,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Create a new audit event with hash chain linkage.

        Postconditions:
            - A new ``AuditEvent`` row is flushed with the next ``seq`` and
              ``hash == H(entity_type, entity_id, action, payload_hash,
              prev_hash)``.
        """
        seq = self._sequence_service.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = payload or {}
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )

        return audit_event

    # Bootstrap and access control

    def record_custody_initialized(
        self,
        actor_id: str,
        primary_controller: str,
        executor: str,
        restricted_depositor: str,
        custody_account: str,
        threshold: int,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=CUSTODY_ENTITY,
            entity_id=custody_account,
            action=AuditAction.CUSTODY_INITIALIZED,
            actor_id=actor_id,
            payload={
                "primary_controller": primary_controller,
                "executor": executor,
                "restricted_depositor": restricted_depositor,
                "custody_account": custody_account,
                "threshold": threshold,
            },
        )

    def record_capability_granted(
        self, actor_id: str, capability: str, identity: str,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=ROLE_ENTITY,
            entity_id=capability,
            action=AuditAction.CAPABILITY_GRANTED,
            actor_id=actor_id,
            payload={"capability": capability, "identity": identity},
        )

    def record_capability_revoked(
        self, actor_id: str, capability: str, identity: str,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=ROLE_ENTITY,
            entity_id=capability,
            action=AuditAction.CAPABILITY_REVOKED,
            actor_id=actor_id,
            payload={"capability": capability, "identity": identity},
        )

    def record_executor_rotated(
        self, actor_id: str, previous: str | None, current: str,
    ) -> AuditEvent:
        """ExecutorUpdated(old, new)."""
        return self._create_audit_event(
            entity_type=ROLE_ENTITY,
            entity_id="executor",
            action=AuditAction.EXECUTOR_ROTATED,
            actor_id=actor_id,
            payload={"previous": previous, "current": current},
        )

    # Circuit breaker

    def record_paused(self, actor_id: str, custody_account: str) -> AuditEvent:
        return self._create_audit_event(
            entity_type=CUSTODY_ENTITY,
            entity_id=custody_account,
            action=AuditAction.SYSTEM_PAUSED,
            actor_id=actor_id,
            payload={"account": actor_id},
        )

    def record_unpaused(self, actor_id: str, custody_account: str) -> AuditEvent:
        return self._create_audit_event(
            entity_type=CUSTODY_ENTITY,
            entity_id=custody_account,
            action=AuditAction.SYSTEM_UNPAUSED,
            actor_id=actor_id,
            payload={"account": actor_id},
        )

    # Redirection

    def record_value_redirected(
        self,
        sender: str,
        recipient: str,
        amount: int,
        threshold: int,
        cumulative_redirected: int,
    ) -> AuditEvent:
        """FundsRedirected(sender, recipient, amount)."""
        return self._create_audit_event(
            entity_type=CUSTODY_ENTITY,
            entity_id=recipient,
            action=AuditAction.VALUE_REDIRECTED,
            actor_id=sender,
            payload={
                "sender": sender,
                "recipient": recipient,
                "amount": amount,
                "threshold": threshold,
                "cumulative_redirected": cumulative_redirected,
            },
        )

    # Threshold

    def record_threshold_update_requested(
        self, actor_id: str, correlation_id: str, job_id: str, fee: int,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=ORACLE_ENTITY,
            entity_id=correlation_id,
            action=AuditAction.THRESHOLD_UPDATE_REQUESTED,
            actor_id=actor_id,
            payload={"correlation_id": correlation_id, "job_id": job_id, "fee": fee},
        )

    def record_threshold_changed(
        self,
        actor_id: str,
        previous: int,
        current: int,
        source: str,
        correlation_id: str | None = None,
        price_sample: int | None = None,
    ) -> AuditEvent:
        """ThresholdUpdated(new); the oracle path also carries the sample."""
        payload: dict[str, Any] = {
            "previous": previous,
            "current": current,
            "source": source,
        }
        if correlation_id is not None:
            payload["correlation_id"] = correlation_id
        if price_sample is not None:
            payload["price_sample"] = price_sample
        return self._create_audit_event(
            entity_type=ORACLE_ENTITY if correlation_id else CUSTODY_ENTITY,
            entity_id=correlation_id or "threshold",
            action=AuditAction.THRESHOLD_CHANGED,
            actor_id=actor_id,
            payload=payload,
        )

    # Dual-control workflow

    def record_transfer_intent(
        self, depositor: str, amount: int, destination: str,
    ) -> AuditEvent:
        """TransferIntentRecorded -- survives the depositor's rejected call."""
        return self._create_audit_event(
            entity_type=TRANSFER_ENTITY,
            entity_id="intent",
            action=AuditAction.TRANSFER_INTENT_RECORDED,
            actor_id=depositor,
            payload={"amount": amount, "destination": destination},
        )

    def record_transfer_requested(
        self, request_id: int, requester: str, destination: str, amount: int,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=TRANSFER_ENTITY,
            entity_id=str(request_id),
            action=AuditAction.TRANSFER_REQUESTED,
            actor_id=requester,
            payload={
                "request_id": request_id,
                "destination": destination,
                "amount": amount,
            },
        )

    def record_transfer_approved(
        self, request_id: int, approver: str, slot: str,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=TRANSFER_ENTITY,
            entity_id=str(request_id),
            action=AuditAction.TRANSFER_APPROVED,
            actor_id=approver,
            payload={"request_id": request_id, "slot": slot},
        )

    def record_transfer_executed(
        self,
        request_id: int,
        executed_by: str,
        owner: str,
        destination: str,
        amount: int,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=TRANSFER_ENTITY,
            entity_id=str(request_id),
            action=AuditAction.TRANSFER_EXECUTED,
            actor_id=executed_by,
            payload={
                "request_id": request_id,
                "owner": owner,
                "destination": destination,
                "amount": amount,
            },
        )

    # Administrative movement

    def record_funds_withdrawn(
        self, actor_id: str, recipient: str, value_amount: int, asset_amount: int,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=CUSTODY_ENTITY,
            entity_id=recipient,
            action=AuditAction.FUNDS_WITHDRAWN,
            actor_id=actor_id,
            payload={
                "recipient": recipient,
                "value_amount": value_amount,
                "asset_amount": asset_amount,
            },
        )

    def record_depositor_funded(
        self, actor_id: str, depositor: str, amount: int,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=CUSTODY_ENTITY,
            entity_id=depositor,
            action=AuditAction.DEPOSITOR_FUNDED,
            actor_id=actor_id,
            payload={"depositor": depositor, "amount": amount},
        )

    def record_excess_swept(
        self, actor_id: str, recipient: str, amount: int,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type=CUSTODY_ENTITY,
            entity_id=recipient,
            action=AuditAction.EXCESS_SWEPT,
            actor_id=actor_id,
            payload={"recipient": recipient, "amount": amount},
        )

    def record_emergency_sweep(
        self, actor_id: str, depositor: str, observed_balance: int, recipient: str,
    ) -> AuditEvent:
        """EmergencySweep(depositor, balance)."""
        return self._create_audit_event(
            entity_type=CUSTODY_ENTITY,
            entity_id=depositor,
            action=AuditAction.EMERGENCY_SWEEP_SIGNALLED,
            actor_id=actor_id,
            payload={
                "depositor": depositor,
                "observed_balance": observed_balance,
                "recipient": recipient,
            },
        )

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": events[0].seq})
            raise AuditChainBrokenError(
                str(events[0].id),
                "None",
                events[0].prev_hash,
            )

        for i, event in enumerate(events):
            action_value = (
                event.action.value if isinstance(event.action, AuditAction) else event.action
            )

            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=action_value,
                payload_hash=event.payload_hash,
                prev_hash=event.prev_hash,
            )

            if event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    str(event.id),
                    expected_hash,
                    event.hash,
                )

            if i > 0:
                expected_prev = events[i - 1].hash
                if event.prev_hash != expected_prev:
                    logger.critical("audit_chain_broken", extra={"seq": event.seq})
                    raise AuditChainBrokenError(
                        str(event.id),
                        expected_prev,
                        event.prev_hash or "None",
                    )

        logger.info(
            "audit_chain_valid",
            extra={"event_count": len(events)},
        )
        return True

    # Trace and query methods

    def get_trace(self, entity_type: str, entity_id: str) -> AuditTrace:
        """Get the complete audit trace for an entity."""
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == str(entity_id),
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=str(entity_id),
            entries=tuple(_to_entry(event) for event in events),
        )

    def get_events(self, action: AuditAction | None = None) -> list[AuditTraceEntry]:
        """Every event in emission order, optionally filtered by action."""
        stmt = select(AuditEvent).order_by(AuditEvent.seq)
        if action is not None:
            stmt = stmt.where(AuditEvent.action == action.value)
        return [_to_entry(event) for event in self._session.execute(stmt).scalars()]

    def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Most recent audit events, newest first."""
        result = self._session.execute(
            select(AuditEvent)
            .order_by(AuditEvent.seq.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
