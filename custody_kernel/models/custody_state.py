"""
Module: custody_kernel.models.custody_state
Responsibility: ORM persistence for the single custody aggregate row --
    principals, circuit breaker flag, redirection threshold and counters.
Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions only.

Invariants enforced:
    - Exactly one row (``singleton_key`` is unique and always "custody").
    - threshold > 0 (check constraint; services validate first).
    - cumulative_redirected >= 0 and only decreases through withdraw_all.
    - primary_controller, restricted_depositor, custody_account are
      write-once (db/immutability.py).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, CheckConstraint, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from custody_kernel.db.base import Base, UTCDateTime
from custody_kernel.exceptions import CustodyNotInitializedError

SINGLETON_KEY = "custody"

# Columns that never change after bootstrap.
IMMUTABLE_PRINCIPAL_FIELDS = frozenset({
    "singleton_key",
    "primary_controller",
    "restricted_depositor",
    "custody_account",
})


class CustodyStateModel(Base):
    """The custody aggregate (one row)."""

    __tablename__ = "custody_state"

    __table_args__ = (
        CheckConstraint("threshold > 0", name="ck_custody_state_threshold_positive"),
        CheckConstraint(
            "cumulative_redirected >= 0",
            name="ck_custody_state_cumulative_non_negative",
        ),
    )

    singleton_key: Mapped[str] = mapped_column(
        String(20), nullable=False, unique=True, default=SINGLETON_KEY,
    )
    primary_controller: Mapped[str] = mapped_column(String(128), nullable=False)
    restricted_depositor: Mapped[str] = mapped_column(String(128), nullable=False)
    custody_account: Mapped[str] = mapped_column(String(128), nullable=False)
    paused: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    threshold: Mapped[int] = mapped_column(BigInteger, nullable=False)
    cumulative_redirected: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0,
    )
    redirect_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_event_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True,
    )
    initialized_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<CustodyState primary={self.primary_controller} "
            f"paused={self.paused} threshold={self.threshold}>"
        )


def find_custody_state(session: Session) -> CustodyStateModel | None:
    return session.execute(
        select(CustodyStateModel).where(
            CustodyStateModel.singleton_key == SINGLETON_KEY,
        )
    ).scalar_one_or_none()


def load_custody_state(session: Session) -> CustodyStateModel:
    """Load the aggregate row, raising if bootstrap has not run."""
    state = find_custody_state(session)
    if state is None:
        raise CustodyNotInitializedError()
    return state
