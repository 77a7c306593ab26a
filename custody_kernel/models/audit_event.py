"""
Module: custody_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident event log.  Every
    mutating custody operation "emits" its event by appending a row here.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (db/immutability.py).
    - Hash chain: hash = H(entity_type | entity_id | action | payload_hash |
      prev_hash), validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from custody_kernel.db.base import Base, UTCDateTime


class AuditAction(str, Enum):
    """Types of emitted custody events."""

    # Bootstrap / access
    CUSTODY_INITIALIZED = "custody_initialized"
    CAPABILITY_GRANTED = "capability_granted"
    CAPABILITY_REVOKED = "capability_revoked"
    EXECUTOR_ROTATED = "executor_rotated"

    # Circuit breaker
    SYSTEM_PAUSED = "system_paused"
    SYSTEM_UNPAUSED = "system_unpaused"

    # Redirection
    VALUE_REDIRECTED = "value_redirected"

    # Threshold
    THRESHOLD_UPDATE_REQUESTED = "threshold_update_requested"
    THRESHOLD_CHANGED = "threshold_changed"

    # Dual-control workflow
    TRANSFER_INTENT_RECORDED = "transfer_intent_recorded"
    TRANSFER_REQUESTED = "transfer_requested"
    TRANSFER_APPROVED = "transfer_approved"
    TRANSFER_EXECUTED = "transfer_executed"

    # Administrative movement
    FUNDS_WITHDRAWN = "funds_withdrawn"
    DEPOSITOR_FUNDED = "depositor_funded"
    EXCESS_SWEPT = "excess_swept"
    EMERGENCY_SWEEP_SIGNALLED = "emergency_sweep_signalled"


class AuditEvent(Base):
    """
    Emitted event with hash chain for tamper evidence.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_seq", "seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # "Custody", "TransferRequest", "OracleRequest", "Role"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(128), nullable=False)

    action: Mapped[AuditAction] = mapped_column(String(50), nullable=False)

    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
