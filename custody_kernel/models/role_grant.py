"""
Module: custody_kernel.models.role_grant
Responsibility: ORM persistence for capability grants (AccessState).

Invariants enforced:
    - UNIQUE(capability, identity): a capability is held at most once.
    - The primary controller's Admin row is never deleted
      (db/immutability.py).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from custody_kernel.db.base import Base, UTCDateTime


class RoleGrantModel(Base):
    """One (capability, identity) pair."""

    __tablename__ = "role_grants"

    __table_args__ = (
        UniqueConstraint("capability", "identity", name="uq_role_grants_capability_identity"),
        Index("ix_role_grants_identity", "identity"),
    )

    capability: Mapped[str] = mapped_column(String(20), nullable=False)
    identity: Mapped[str] = mapped_column(String(128), nullable=False)
    granted_by: Mapped[str] = mapped_column(String(128), nullable=False)
    granted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<RoleGrant {self.capability}:{self.identity}>"
