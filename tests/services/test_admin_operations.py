"""
AdminOperations service.

Covers:
- rotate_executor(): single holder, reserved identities rejected
- withdraw_all(): both legs, counter reset, allowance preflight
- emergency_sweep(): signal only, nothing moves
- fund_restricted_depositor() / sweep_excess_value()
"""

import pytest

from custody_kernel.domain.capabilities import Capability
from custody_kernel.exceptions import (
    AssetTransferFailedError,
    EmptyDepositorBalanceError,
    InsufficientAllowanceError,
    InsufficientCustodyBalanceError,
    InvalidAmountError,
    InvalidIdentityError,
    MissingCapabilityError,
    NothingToWithdrawError,
    ReentrantCallError,
    ReservedIdentityError,
    SystemPausedError,
)
from custody_kernel.models.audit_event import AuditAction
from custody_kernel.models.custody_state import load_custody_state
from tests.conftest import CUSTODY, DEPOSITOR, EXECUTOR, OUTSIDER, PRIMARY, native


class TestRotateExecutor:
    """Executor rotation."""

    def test_rotation_moves_capability(self, admin_operations, role_registry, auditor_service):
        rotation = admin_operations.rotate_executor(PRIMARY, OUTSIDER)

        assert rotation.previous == EXECUTOR
        assert rotation.current == OUTSIDER
        assert role_registry.holders(Capability.EXECUTOR) == (OUTSIDER,)
        assert not role_registry.has(Capability.EXECUTOR, EXECUTOR)
        event = auditor_service.get_events(AuditAction.EXECUTOR_ROTATED)[0]
        assert event.payload == {"previous": EXECUTOR, "current": OUTSIDER}

    @pytest.mark.parametrize(
        "candidate,reason",
        [
            (PRIMARY, "primary controller"),
            (DEPOSITOR, "restricted depositor"),
            (CUSTODY, "custody account"),
            (EXECUTOR, "already holds executor"),
        ],
    )
    def test_reserved_candidates(self, admin_operations, candidate, reason):
        with pytest.raises(ReservedIdentityError) as exc_info:
            admin_operations.rotate_executor(PRIMARY, candidate)

        assert reason in exc_info.value.reason

    def test_capability_holder_rejected(self, admin_operations, role_registry):
        role_registry.grant(Capability.PAUSER, OUTSIDER, PRIMARY)

        with pytest.raises(ReservedIdentityError):
            admin_operations.rotate_executor(PRIMARY, OUTSIDER)

    def test_empty_candidate(self, admin_operations):
        with pytest.raises(InvalidIdentityError):
            admin_operations.rotate_executor(PRIMARY, "")

    def test_executor_cannot_rotate(self, admin_operations):
        with pytest.raises(MissingCapabilityError):
            admin_operations.rotate_executor(EXECUTOR, OUTSIDER)


class TestWithdrawAll:
    """Sweep of native value and custodied asset."""

    def test_both_legs(self, admin_operations, value_ledger, funded_asset, session):
        value_ledger.credit(CUSTODY, native(3))
        state = load_custody_state(session)
        state.cumulative_redirected = native(90)
        state.redirect_count = 3
        session.flush()

        receipt = admin_operations.withdraw_all(PRIMARY)

        assert receipt.recipient == PRIMARY
        assert receipt.value_amount == native(3)
        assert receipt.asset_amount == 1_000
        assert value_ledger.balance_of(PRIMARY) == native(3)
        assert funded_asset.balance_of(PRIMARY) == 1_000
        assert state.cumulative_redirected == 0
        assert state.redirect_count == 0

    def test_value_only(self, admin_operations, value_ledger, asset_ledger):
        value_ledger.credit(CUSTODY, 5)

        receipt = admin_operations.withdraw_all(PRIMARY)

        assert (receipt.value_amount, receipt.asset_amount) == (5, 0)
        assert asset_ledger.transfers == []

    def test_nothing_to_withdraw(self, admin_operations):
        with pytest.raises(NothingToWithdrawError):
            admin_operations.withdraw_all(PRIMARY)

    def test_allowance_preflight(self, admin_operations, value_ledger, asset_ledger):
        value_ledger.credit(CUSTODY, 5)
        asset_ledger.mint(DEPOSITOR, 1_000)
        asset_ledger.approve(DEPOSITOR, CUSTODY, 999)

        with pytest.raises(InsufficientAllowanceError) as exc_info:
            admin_operations.withdraw_all(PRIMARY)

        assert (exc_info.value.allowance, exc_info.value.required) == (999, 1_000)
        assert value_ledger.transfers == []

    def test_asset_leg_failure_logged_for_reconciliation(
        self, admin_operations, value_ledger, funded_asset, captured_logs,
    ):
        value_ledger.credit(CUSTODY, 5)
        funded_asset.refuse = True

        with pytest.raises(AssetTransferFailedError):
            admin_operations.withdraw_all(PRIMARY)

        assert any(
            r["message"] == "withdrawal_needs_reconciliation" and r["level"] == "ERROR"
            for r in captured_logs()
        )

    def test_audited(self, admin_operations, value_ledger, auditor_service):
        value_ledger.credit(CUSTODY, 5)
        admin_operations.withdraw_all(PRIMARY)

        event = auditor_service.get_events(AuditAction.FUNDS_WITHDRAWN)[0]
        assert event.payload["value_amount"] == 5

    def test_executor_cannot_withdraw(self, admin_operations, value_ledger):
        value_ledger.credit(CUSTODY, 5)

        with pytest.raises(MissingCapabilityError):
            admin_operations.withdraw_all(EXECUTOR)

    def test_guard_held(self, admin_operations, value_ledger, reentrancy_guard):
        value_ledger.credit(CUSTODY, 5)

        with reentrancy_guard.hold("approve"):
            with pytest.raises(ReentrantCallError):
                admin_operations.withdraw_all(PRIMARY)


class TestEmergencySweep:

    def test_signal_only(self, admin_operations, value_ledger, auditor_service):
        value_ledger.credit(DEPOSITOR, native(7))

        signal = admin_operations.emergency_sweep(PRIMARY)

        assert signal.depositor == DEPOSITOR
        assert signal.observed_balance == native(7)
        assert signal.recipient == PRIMARY
        assert signal.signalled_by == PRIMARY
        assert value_ledger.transfers == []
        assert value_ledger.balance_of(DEPOSITOR) == native(7)
        assert auditor_service.get_events(AuditAction.EMERGENCY_SWEEP_SIGNALLED)

    def test_empty_balance(self, admin_operations):
        with pytest.raises(EmptyDepositorBalanceError):
            admin_operations.emergency_sweep(PRIMARY)

    def test_paused(self, admin_operations, circuit_breaker, value_ledger):
        value_ledger.credit(DEPOSITOR, 1)
        circuit_breaker.pause(PRIMARY)

        with pytest.raises(SystemPausedError):
            admin_operations.emergency_sweep(PRIMARY)


class TestFunding:

    def test_fund_depositor(self, admin_operations, value_ledger):
        value_ledger.credit(CUSTODY, 100)

        assert admin_operations.fund_restricted_depositor(PRIMARY, 60) == 60
        assert value_ledger.balance_of(DEPOSITOR) == 60
        assert value_ledger.balance_of(CUSTODY) == 40

    def test_fund_more_than_held(self, admin_operations, value_ledger):
        value_ledger.credit(CUSTODY, 10)

        with pytest.raises(InsufficientCustodyBalanceError):
            admin_operations.fund_restricted_depositor(PRIMARY, 11)

    def test_fund_zero(self, admin_operations):
        with pytest.raises(InvalidAmountError):
            admin_operations.fund_restricted_depositor(PRIMARY, 0)

    def test_sweep_excess(self, admin_operations, value_ledger, auditor_service):
        value_ledger.credit(CUSTODY, 42)

        assert admin_operations.sweep_excess_value(PRIMARY) == 42
        assert value_ledger.balance_of(PRIMARY) == 42
        assert auditor_service.get_events(AuditAction.EXCESS_SWEPT)[0].payload["amount"] == 42

    def test_sweep_excess_empty(self, admin_operations):
        with pytest.raises(NothingToWithdrawError):
            admin_operations.sweep_excess_value(PRIMARY)
