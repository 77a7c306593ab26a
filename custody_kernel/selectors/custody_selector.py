"""
Module: custody_kernel.selectors.custody_selector
Responsibility: Read accessors over the custody aggregate: snapshot,
    threshold, counters, transfer requests and oracle requests.
"""

from __future__ import annotations

from sqlalchemy import select

from custody_kernel.domain.capabilities import Capability
from custody_kernel.domain.dtos import BreakerState, CustodySnapshot, OracleRequestInfo
from custody_kernel.domain.transfer import TransferRequest
from custody_kernel.models.custody_state import load_custody_state
from custody_kernel.models.oracle_request import OracleRequestModel
from custody_kernel.models.role_grant import RoleGrantModel
from custody_kernel.models.transfer_request import TransferRequestModel
from custody_kernel.selectors.base import BaseSelector


class CustodySelector(BaseSelector):
    """Read-only views of custody state."""

    def executor(self) -> str | None:
        return self.session.execute(
            select(RoleGrantModel.identity)
            .where(RoleGrantModel.capability == Capability.EXECUTOR.value)
            .order_by(RoleGrantModel.granted_at)
            .limit(1)
        ).scalar_one_or_none()

    def snapshot(self) -> CustodySnapshot:
        state = load_custody_state(self.session)
        return CustodySnapshot(
            primary_controller=state.primary_controller,
            executor=self.executor(),
            restricted_depositor=state.restricted_depositor,
            custody_account=state.custody_account,
            state=BreakerState.PAUSED if state.paused else BreakerState.RUNNING,
            threshold=state.threshold,
            cumulative_redirected=state.cumulative_redirected,
            redirect_count=state.redirect_count,
            last_event_at=state.last_event_at,
        )

    def current_threshold(self) -> int:
        return load_custody_state(self.session).threshold

    def cumulative_redirected(self) -> int:
        return load_custody_state(self.session).cumulative_redirected

    def is_paused(self) -> bool:
        return load_custody_state(self.session).paused

    def transfer_request(self, request_id: int) -> TransferRequest | None:
        """Request snapshot by id; None for unknown ids (including 0)."""
        model = self.session.execute(
            select(TransferRequestModel).where(
                TransferRequestModel.request_seq == request_id,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def transfer_requests(self, pending_only: bool = False) -> list[TransferRequest]:
        stmt = select(TransferRequestModel).order_by(TransferRequestModel.request_seq)
        if pending_only:
            stmt = stmt.where(TransferRequestModel.executed.is_(False))
        return [model.to_dto() for model in self.session.execute(stmt).scalars()]

    def oracle_request(self, correlation_id: str) -> OracleRequestInfo | None:
        model = self.session.execute(
            select(OracleRequestModel).where(
                OracleRequestModel.correlation_id == correlation_id,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None
