"""
custody_kernel.services.approval_workflow -- Dual-control transfer requests.

Responsibility:
    Creates transfer requests, records approvals from the primary (Admin)
    and executor slots, and executes the asset transfer exactly once when
    both slots are set.  Exclusive writer of the ``transfer_requests`` table.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

State machine:

    create_request(Admin)     create_request(Executor)
           |                          |
           v                          v
    Pending(P=1, E=0)          Pending(P=0, E=1)
           |   approve(Executor)      |   approve(Admin)
           +------------+-------------+
                        v
                  Pending(1, 1) --> _execute() --> Executed (terminal)

Invariants enforced:
    - Request ids start at 1 and come from SequenceService.
    - amount > 0, destination non-empty; both frozen after creation.
    - Each slot is set at most once; re-approval is an error.
    - ``executed`` flips before the outbound asset call and never reverts
      except by rollback of the whole unit of work.

Failure modes:
    - DepositorRequestRejectedError (after validation; the orchestrator
      records the intent in its own unit of work)
    - MissingCapabilityError, TransferRequestNotFoundError,
      AlreadyExecutedError, AlreadyApprovedError
    - InvalidAmountError, InvalidIdentityError
    - AssetTransferFailedError
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from custody_kernel.domain.capabilities import APPROVER_CAPABILITIES, ApprovalSlot, slot_for
from custody_kernel.domain.clock import Clock, SystemClock
from custody_kernel.domain.collaborators import AssetLedger
from custody_kernel.domain.transfer import NULL_REQUEST_ID, TransferRequest
from custody_kernel.domain.validation import require_identity, require_positive_amount
from custody_kernel.exceptions import (
    AlreadyApprovedError,
    AlreadyExecutedError,
    DepositorRequestRejectedError,
    MissingCapabilityError,
    TransferRequestNotFoundError,
)
from custody_kernel.logging_config import get_logger
from custody_kernel.models.custody_state import load_custody_state
from custody_kernel.models.transfer_request import TransferRequestModel
from custody_kernel.services.auditor_service import AuditorService
from custody_kernel.services.circuit_breaker import CircuitBreaker
from custody_kernel.services.ledger_calls import pull_asset
from custody_kernel.services.reentrancy_guard import ReentrancyGuard
from custody_kernel.services.role_registry import RoleRegistry
from custody_kernel.services.sequence_service import SequenceService

logger = get_logger("services.approval_workflow")


class ApprovalWorkflow:
    """Manages the transfer request lifecycle."""

    def __init__(
        self,
        session: Session,
        roles: RoleRegistry,
        breaker: CircuitBreaker,
        guard: ReentrancyGuard,
        auditor: AuditorService,
        asset_ledger: AssetLedger,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._roles = roles
        self._breaker = breaker
        self._guard = guard
        self._auditor = auditor
        self._asset_ledger = asset_ledger
        self._clock = clock or SystemClock()
        self._sequence = SequenceService(session)

    def _resolve_slot(self, caller: str) -> ApprovalSlot:
        slot = slot_for(self._roles.capabilities_of(caller))
        if slot is None:
            raise MissingCapabilityError(
                caller, tuple(capability.value for capability in APPROVER_CAPABILITIES),
            )
        return slot

    def _load_model(self, request_id: int) -> TransferRequestModel:
        if isinstance(request_id, bool) or not isinstance(request_id, int) or request_id <= NULL_REQUEST_ID:
            raise TransferRequestNotFoundError(request_id)
        model = self._session.execute(
            select(TransferRequestModel).where(
                TransferRequestModel.request_seq == request_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise TransferRequestNotFoundError(request_id)
        return model

    def create_request(self, caller: str, amount: int, destination: str) -> TransferRequest:
        """
        Open a transfer request with the caller's own slot pre-approved.

        The restricted depositor may call this too, but only to signal
        intent: after validation it always gets DepositorRequestRejectedError.
        """
        self._breaker.require_running("create_request")

        with self._guard.hold("create_request"):
            state = load_custody_state(self._session)
            slot = slot_for(self._roles.capabilities_of(caller))
            if slot is None and caller != state.restricted_depositor:
                raise MissingCapabilityError(
                    caller, tuple(capability.value for capability in APPROVER_CAPABILITIES),
                )

            require_positive_amount(amount)
            require_identity("destination", destination)

            if slot is None:
                raise DepositorRequestRejectedError(caller, amount, destination)

            request_id = self._sequence.next_value(SequenceService.TRANSFER_REQUEST)
            model = TransferRequestModel(
                request_seq=request_id,
                requester=caller,
                destination=destination,
                amount=amount,
                primary_approved=slot is ApprovalSlot.PRIMARY,
                executor_approved=slot is ApprovalSlot.EXECUTOR,
                executed=False,
                created_at=self._clock.now(),
            )
            self._session.add(model)
            self._session.flush()

            self._auditor.record_transfer_requested(request_id, caller, destination, amount)
            self._auditor.record_transfer_approved(request_id, caller, slot.value)

            logger.info(
                "transfer_request_created",
                extra={
                    "request_id": request_id,
                    "destination": destination,
                    "amount": amount,
                    "slot": slot.value,
                },
            )

            if model.primary_approved and model.executor_approved:
                self._execute(model, caller)

            return model.to_dto()

    def record_depositor_intent(self, depositor: str, amount: int, destination: str) -> None:
        """Persist the depositor's rejected request as an audit event."""
        self._auditor.record_transfer_intent(depositor, amount, destination)
        logger.info(
            "transfer_intent_recorded",
            extra={"depositor": depositor, "amount": amount, "destination": destination},
        )

    def approve(self, caller: str, request_id: int) -> TransferRequest:
        """
        Set the caller's approval slot and execute once both are set.

        Postconditions:
            - The caller's slot is True.
            - If both slots are True, the asset transfer ran and
              ``executed`` is True.
        """
        self._breaker.require_running("approve")

        with self._guard.hold("approve"):
            slot = self._resolve_slot(caller)
            model = self._load_model(request_id)

            if model.executed:
                raise AlreadyExecutedError(request_id)
            if model.to_dto().is_approved_by(slot):
                raise AlreadyApprovedError(request_id, slot.value)

            if slot is ApprovalSlot.PRIMARY:
                model.primary_approved = True
            else:
                model.executor_approved = True
            self._session.flush()

            self._auditor.record_transfer_approved(request_id, caller, slot.value)
            logger.info(
                "transfer_approved",
                extra={"request_id": request_id, "slot": slot.value},
            )

            if model.primary_approved and model.executor_approved:
                self._execute(model, caller)

            return model.to_dto()

    def _execute(self, model: TransferRequestModel, caller: str) -> None:
        """Flip ``executed`` and pull the asset to the destination."""
        if not model.to_dto().ready_to_execute:
            raise AlreadyExecutedError(model.request_seq)

        owner = load_custody_state(self._session).restricted_depositor

        model.executed = True
        model.executed_at = self._clock.now()
        model.executed_by = caller
        self._session.flush()

        pull_asset(self._asset_ledger, owner, model.destination, model.amount)

        self._auditor.record_transfer_executed(
            model.request_seq, caller, owner, model.destination, model.amount,
        )
        logger.info(
            "transfer_executed",
            extra={
                "request_id": model.request_seq,
                "owner": owner,
                "destination": model.destination,
                "amount": model.amount,
            },
        )

    def get_request(self, request_id: int) -> TransferRequest:
        return self._load_model(request_id).to_dto()

    def list_pending(self) -> list[TransferRequest]:
        rows = self._session.execute(
            select(TransferRequestModel)
            .where(TransferRequestModel.executed.is_(False))
            .order_by(TransferRequestModel.request_seq)
        ).scalars()
        return [row.to_dto() for row in rows]
