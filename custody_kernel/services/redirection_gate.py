"""
RedirectionGate -- automatic forwarding of the restricted depositor's value.

Responsibility:
    Validates inbound value arriving at the custody account and forwards it
    in full to the primary controller once it meets the current threshold.
    Maintains the cumulative redirection counters.

Architecture position:
    Kernel > Services.  Called by CustodyOrchestrator.on_inbound_value.

Invariants enforced (checked in this order, each with its own reason):
    1. The circuit breaker is Running.
    2. The sender is exactly the restricted depositor.  The primary
       controller gets DirectDepositRejectedError; anyone else
       UnauthorizedSenderError.
    3. The sender is a key-holding account reached directly: no relaying
       origin, not code-controlled.
    4. amount > 0 and amount >= threshold.

    Counters change only together with a successful forward; a failed
    forward raises and the unit of work rolls the counters back.

Failure modes:
    - SystemPausedError, ReentrantCallError
    - DirectDepositRejectedError, UnauthorizedSenderError, ProxiedOriginError
    - InvalidAmountError, BelowThresholdError
    - ValueTransferFailedError
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from custody_kernel.domain.clock import Clock, SystemClock
from custody_kernel.domain.collaborators import ValueLedger
from custody_kernel.domain.dtos import RedirectionReceipt
from custody_kernel.domain.validation import require_positive_amount
from custody_kernel.exceptions import (
    BelowThresholdError,
    DirectDepositRejectedError,
    ProxiedOriginError,
    UnauthorizedSenderError,
)
from custody_kernel.logging_config import get_logger
from custody_kernel.models.custody_state import load_custody_state
from custody_kernel.services.auditor_service import AuditorService
from custody_kernel.services.circuit_breaker import CircuitBreaker
from custody_kernel.services.ledger_calls import send_value
from custody_kernel.services.reentrancy_guard import ReentrancyGuard

logger = get_logger("services.redirection_gate")


class RedirectionGate:
    """Receive path of the custody account."""

    OPERATION = "on_inbound_value"

    def __init__(
        self,
        session: Session,
        breaker: CircuitBreaker,
        guard: ReentrancyGuard,
        auditor: AuditorService,
        value_ledger: ValueLedger,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._breaker = breaker
        self._guard = guard
        self._auditor = auditor
        self._value_ledger = value_ledger
        self._clock = clock or SystemClock()

    def on_inbound_value(
        self,
        sender: str,
        amount: int,
        origin: str | None = None,
    ) -> RedirectionReceipt:
        """
        Accept ``amount`` from ``sender`` and forward it to the controller.

        ``origin`` is the identity that started the call chain when it is
        known; it must equal ``sender``.

        Postconditions:
            - cumulative_redirected grew by exactly ``amount``.
            - redirect_count grew by one and last_event_at is now.
            - ``amount`` was sent to the primary controller.
        """
        self._breaker.require_running(self.OPERATION)

        with self._guard.hold(self.OPERATION):
            state = load_custody_state(self._session)

            if sender == state.primary_controller:
                raise DirectDepositRejectedError(sender)
            if sender != state.restricted_depositor:
                raise UnauthorizedSenderError(sender)
            if (origin is not None and origin != sender) or self._value_ledger.is_contract(sender):
                raise ProxiedOriginError(sender, origin)

            require_positive_amount(amount)
            threshold = state.threshold
            if amount < threshold:
                raise BelowThresholdError(amount, threshold)

            now = self._clock.now()
            state.cumulative_redirected += amount
            state.redirect_count += 1
            state.last_event_at = now
            self._session.flush()

            send_value(self._value_ledger, state.primary_controller, amount)

            self._auditor.record_value_redirected(
                sender=sender,
                recipient=state.primary_controller,
                amount=amount,
                threshold=threshold,
                cumulative_redirected=state.cumulative_redirected,
            )

            logger.info(
                "value_redirected",
                extra={
                    "sender": sender,
                    "recipient": state.primary_controller,
                    "amount": amount,
                    "threshold": threshold,
                    "cumulative_redirected": state.cumulative_redirected,
                },
            )

            return RedirectionReceipt(
                sender=sender,
                recipient=state.primary_controller,
                amount=amount,
                threshold=threshold,
                cumulative_redirected=state.cumulative_redirected,
                redirected_at=now,
            )
