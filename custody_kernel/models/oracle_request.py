"""
Module: custody_kernel.models.oracle_request
Responsibility: ORM persistence for price-oracle requests and their
    fulfillments (correlation id -> price sample -> threshold).

Invariants enforced:
    - correlation_id is unique.
    - status moves pending -> fulfilled once; a fulfilled row is frozen
      (ThresholdController rejects a second fulfillment first).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Boolean, CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from custody_kernel.db.base import Base, UTCDateTime

if TYPE_CHECKING:
    from custody_kernel.domain.dtos import OracleRequestInfo


class OracleRequestModel(Base):
    """Persistent oracle request."""

    __tablename__ = "oracle_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'fulfilled')",
            name="ck_oracle_requests_valid_status",
        ),
    )

    correlation_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    job_id: Mapped[str] = mapped_column(String(128), nullable=False)
    requested_by: Mapped[str] = mapped_column(String(128), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    price_sample: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    resulting_threshold: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    fulfilled_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    fulfilled_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )

    def __repr__(self) -> str:
        return f"<OracleRequest {self.correlation_id} status={self.status}>"

    def to_dto(self) -> OracleRequestInfo:
        from custody_kernel.domain.dtos import OracleRequestInfo, OracleRequestStatus

        return OracleRequestInfo(
            correlation_id=self.correlation_id,
            requested_by=self.requested_by,
            status=OracleRequestStatus(self.status),
            requested_at=self.requested_at,
            price_sample=self.price_sample,
            resulting_threshold=self.resulting_threshold,
            fulfilled_by=self.fulfilled_by,
            fulfilled_at=self.fulfilled_at,
            manual=self.manual,
        )
