"""
AdminOperations -- executor rotation and administrative value movement.

Responsibility:
    Admin-only operations that are not part of the dual-control workflow:

    rotate_executor            revoke Executor from the old holder, grant the new
    withdraw_all               sweep residual value and the custodied asset
                               to the primary controller
    emergency_sweep            signal the out-of-band sweep of the depositor
    fund_restricted_depositor  top up the depositor from the custody account
    sweep_excess_value         send the custody account's residual value home

Architecture position:
    Kernel > Services.

Invariants enforced:
    - Exactly one Executor holder after rotation; revoke and grant happen in
      the same unit of work.
    - The executor candidate is never a principal or an existing capability
      holder.
    - withdraw_all is all-or-nothing: both legs are preflighted and any leg
      failure rolls back the whole unit of work, including the counter reset.

Failure modes:
    - MissingCapabilityError, SystemPausedError, ReentrantCallError
    - InvalidIdentityError, ReservedIdentityError
    - InsufficientAllowanceError, NothingToWithdrawError,
      EmptyDepositorBalanceError, InsufficientCustodyBalanceError
    - ValueTransferFailedError, AssetTransferFailedError
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from custody_kernel.domain.capabilities import Capability
from custody_kernel.domain.clock import Clock, SystemClock
from custody_kernel.domain.collaborators import AssetLedger, ValueLedger
from custody_kernel.domain.dtos import EmergencySweepSignal, ExecutorRotation, WithdrawalReceipt
from custody_kernel.domain.validation import require_identity, require_positive_amount
from custody_kernel.exceptions import (
    CollaboratorFailure,
    EmptyDepositorBalanceError,
    InsufficientAllowanceError,
    InsufficientCustodyBalanceError,
    NothingToWithdrawError,
    ReservedIdentityError,
)
from custody_kernel.logging_config import get_logger
from custody_kernel.models.custody_state import load_custody_state
from custody_kernel.services.auditor_service import AuditorService
from custody_kernel.services.circuit_breaker import CircuitBreaker
from custody_kernel.services.ledger_calls import pull_asset, send_value
from custody_kernel.services.reentrancy_guard import ReentrancyGuard
from custody_kernel.services.role_registry import RoleRegistry

logger = get_logger("services.admin_operations")


class AdminOperations:
    """Administrative operations of the primary controller."""

    def __init__(
        self,
        session: Session,
        roles: RoleRegistry,
        breaker: CircuitBreaker,
        guard: ReentrancyGuard,
        auditor: AuditorService,
        value_ledger: ValueLedger,
        asset_ledger: AssetLedger,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._roles = roles
        self._breaker = breaker
        self._guard = guard
        self._auditor = auditor
        self._value_ledger = value_ledger
        self._asset_ledger = asset_ledger
        self._clock = clock or SystemClock()

    def rotate_executor(self, caller: str, new_executor: str) -> ExecutorRotation:
        """Hand the Executor capability to ``new_executor``."""
        self._breaker.require_running("rotate_executor")
        self._roles.require(Capability.ADMIN, caller)
        require_identity("new_executor", new_executor)

        state = load_custody_state(self._session)
        if new_executor == state.primary_controller:
            raise ReservedIdentityError(new_executor, "is the primary controller")
        if new_executor == state.restricted_depositor:
            raise ReservedIdentityError(new_executor, "is the restricted depositor")
        if new_executor == state.custody_account:
            raise ReservedIdentityError(new_executor, "is the custody account")
        held = self._roles.capabilities_of(new_executor)
        if held:
            raise ReservedIdentityError(
                new_executor,
                "already holds " + ", ".join(sorted(c.value for c in held)),
            )

        previous_holders = self._roles.holders(Capability.EXECUTOR)
        for holder in previous_holders:
            self._roles.revoke(Capability.EXECUTOR, holder, caller)
        self._roles.grant(Capability.EXECUTOR, new_executor, caller)

        previous = previous_holders[0] if previous_holders else None
        self._auditor.record_executor_rotated(caller, previous, new_executor)

        logger.info(
            "executor_rotated",
            extra={"previous": previous, "current": new_executor},
        )
        return ExecutorRotation(previous=previous, current=new_executor)

    def withdraw_all(self, caller: str) -> WithdrawalReceipt:
        """
        Sweep both balances to the primary controller.

        Leg 1 moves the custody account's native balance; leg 2 pulls the
        restricted depositor's asset balance through the custody allowance.
        Resets the redirection counters.

        Rollback covers local state only.  If leg 2 fails after leg 1 was
        sent, the counters are restored but the native value already left
        custody and cannot be recalled; ``withdrawal_needs_reconciliation``
        is logged with both amounts for an operator to settle by hand.
        """
        self._breaker.require_running("withdraw_all")

        with self._guard.hold("withdraw_all"):
            self._roles.require(Capability.ADMIN, caller)
            state = load_custody_state(self._session)
            recipient = state.primary_controller

            value_amount = self._value_ledger.balance_of(state.custody_account)
            asset_amount = self._asset_ledger.balance_of(state.restricted_depositor)
            if asset_amount > 0:
                allowance = self._asset_ledger.allowance(
                    state.restricted_depositor, state.custody_account,
                )
                if allowance < asset_amount:
                    raise InsufficientAllowanceError(
                        state.restricted_depositor, allowance, asset_amount,
                    )
            if value_amount <= 0 and asset_amount <= 0:
                raise NothingToWithdrawError("withdraw_all")

            state.cumulative_redirected = 0
            state.redirect_count = 0
            self._session.flush()

            if value_amount > 0:
                send_value(self._value_ledger, recipient, value_amount)
            if asset_amount > 0:
                try:
                    pull_asset(
                        self._asset_ledger,
                        state.restricted_depositor,
                        recipient,
                        asset_amount,
                    )
                except CollaboratorFailure:
                    if value_amount > 0:
                        # The value leg already left the custody account.
                        logger.error(
                            "withdrawal_needs_reconciliation",
                            extra={
                                "recipient": recipient,
                                "value_amount_sent": value_amount,
                                "asset_amount_failed": asset_amount,
                            },
                        )
                    raise

            self._auditor.record_funds_withdrawn(caller, recipient, value_amount, asset_amount)

            logger.info(
                "funds_withdrawn",
                extra={
                    "recipient": recipient,
                    "value_amount": value_amount,
                    "asset_amount": asset_amount,
                },
            )
            return WithdrawalReceipt(
                recipient=recipient,
                value_amount=value_amount,
                asset_amount=asset_amount,
            )

    def emergency_sweep(self, caller: str) -> EmergencySweepSignal:
        """Emit the sweep signal; no value moves here."""
        self._breaker.require_running("emergency_sweep")
        self._roles.require(Capability.ADMIN, caller)

        state = load_custody_state(self._session)
        balance = self._value_ledger.balance_of(state.restricted_depositor)
        if balance <= 0:
            raise EmptyDepositorBalanceError(state.restricted_depositor)

        self._auditor.record_emergency_sweep(
            caller, state.restricted_depositor, balance, state.primary_controller,
        )

        logger.warning(
            "emergency_sweep_signalled",
            extra={
                "depositor": state.restricted_depositor,
                "observed_balance": balance,
                "recipient": state.primary_controller,
            },
        )
        return EmergencySweepSignal(
            depositor=state.restricted_depositor,
            observed_balance=balance,
            recipient=state.primary_controller,
            signalled_by=caller,
            signalled_at=self._clock.now(),
        )

    def fund_restricted_depositor(self, caller: str, amount: int) -> int:
        """Send ``amount`` of custody value to the restricted depositor."""
        self._breaker.require_running("fund_restricted_depositor")

        with self._guard.hold("fund_restricted_depositor"):
            self._roles.require(Capability.ADMIN, caller)
            require_positive_amount(amount)

            state = load_custody_state(self._session)
            balance = self._value_ledger.balance_of(state.custody_account)
            if balance < amount:
                raise InsufficientCustodyBalanceError(balance, amount)

            send_value(self._value_ledger, state.restricted_depositor, amount)
            self._auditor.record_depositor_funded(caller, state.restricted_depositor, amount)

            logger.info(
                "depositor_funded",
                extra={"depositor": state.restricted_depositor, "amount": amount},
            )
            return amount

    def sweep_excess_value(self, caller: str) -> int:
        """Send the custody account's whole native balance to the controller."""
        self._breaker.require_running("sweep_excess_value")

        with self._guard.hold("sweep_excess_value"):
            self._roles.require(Capability.ADMIN, caller)

            state = load_custody_state(self._session)
            balance = self._value_ledger.balance_of(state.custody_account)
            if balance <= 0:
                raise NothingToWithdrawError("sweep_excess_value")

            send_value(self._value_ledger, state.primary_controller, balance)
            self._auditor.record_excess_swept(caller, state.primary_controller, balance)

            logger.info(
                "excess_value_swept",
                extra={"recipient": state.primary_controller, "amount": balance},
            )
            return balance
