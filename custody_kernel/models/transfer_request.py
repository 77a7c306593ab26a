"""
Module: custody_kernel.models.transfer_request
Responsibility: ORM persistence for dual-control transfer requests.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - request_seq is unique and >= 1 (allocated by SequenceService).
    - amount > 0 (check constraint).
    - executed implies both approval flags (check constraint).
    - amount, destination, requester and request_seq are write-once; an
      executed row is frozen entirely; rows are never deleted
      (db/immutability.py).

Failure modes:
    - IntegrityError on a duplicate request_seq.
    - ImmutabilityViolationError on a forbidden UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from custody_kernel.db.base import Base, UTCDateTime

if TYPE_CHECKING:
    from custody_kernel.domain.transfer import TransferRequest

# Fields frozen from creation onward.
TRANSFER_IMMUTABLE_FIELDS = frozenset({"request_seq", "requester", "destination", "amount"})


class TransferRequestModel(Base):
    """Persistent transfer request.

    Contract:
        Flags move False -> True only.  ``executed`` flips once, after both
        flags are set, and the row is frozen from then on.
    """

    __tablename__ = "transfer_requests"

    __table_args__ = (
        CheckConstraint("request_seq >= 1", name="ck_transfer_requests_seq_positive"),
        CheckConstraint("amount > 0", name="ck_transfer_requests_amount_positive"),
        CheckConstraint(
            "NOT executed OR (primary_approved AND executor_approved)",
            name="ck_transfer_requests_executed_requires_approvals",
        ),
        Index("ix_transfer_requests_pending", "executed", "request_seq"),
    )

    request_seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    requester: Mapped[str] = mapped_column(String(128), nullable=False)
    destination: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    primary_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    executor_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    executed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    executed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    executed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<TransferRequest #{self.request_seq} {self.amount} -> "
            f"{self.destination} executed={self.executed}>"
        )

    def to_dto(self) -> TransferRequest:
        """Convert ORM model to frozen domain DTO."""
        from custody_kernel.domain.transfer import TransferRequest as TransferRequestDTO

        return TransferRequestDTO(
            request_id=self.request_seq,
            requester=self.requester,
            destination=self.destination,
            amount=self.amount,
            primary_approved=self.primary_approved,
            executor_approved=self.executor_approved,
            executed=self.executed,
            created_at=self.created_at,
            executed_at=self.executed_at,
            executed_by=self.executed_by,
        )
