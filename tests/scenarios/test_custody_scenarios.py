"""
End-to-end custody scenarios through CustodyOrchestrator.

Covers:
- Bootstrap: grants, snapshot, single initialization, principal checks
- Redirection: 25 threshold, 30 accepted, 20 rejected
- Dual control: Admin requests 100 to X, Executor approves, executes once
- Threshold: oracle price 0.10 with a 5-unit target gives 50 units
- Executor rotation and read accessors
"""

import pytest

from custody_kernel.domain.capabilities import Capability
from custody_kernel.domain.dtos import BreakerState, OracleRequestStatus
from custody_kernel.exceptions import (
    AlreadyExecutedError,
    AlreadyInitializedError,
    BelowThresholdError,
    CustodyNotInitializedError,
    InvalidIdentityError,
    MissingCapabilityError,
    ReservedIdentityError,
    StateError,
    TransferRequestNotFoundError,
    UnauthorizedSenderError,
)
from custody_kernel.models.audit_event import AuditAction
from custody_kernel.services.custody_orchestrator import CustodyPrincipals
from tests.conftest import (
    CUSTODY,
    DEPOSITOR,
    DESTINATION,
    EXECUTOR,
    ORACLE,
    OUTSIDER,
    PRIMARY,
    native,
)


class TestBootstrap:
    """Custody initialization."""

    def test_snapshot_after_bootstrap(self, orchestrator):
        snapshot = orchestrator.snapshot()

        assert snapshot.primary_controller == PRIMARY
        assert snapshot.executor == EXECUTOR
        assert snapshot.restricted_depositor == DEPOSITOR
        assert snapshot.custody_account == CUSTODY
        assert snapshot.state is BreakerState.RUNNING
        assert not snapshot.paused
        assert snapshot.threshold == native(25)
        assert snapshot.cumulative_redirected == 0
        assert snapshot.last_event_at is None

    def test_initial_capabilities(self, orchestrator):
        assert orchestrator.has_capability(Capability.ADMIN, PRIMARY)
        assert orchestrator.has_capability(Capability.PAUSER, PRIMARY)
        assert orchestrator.has_capability(Capability.EXECUTOR, EXECUTOR)
        assert not orchestrator.has_capability(Capability.ADMIN, DEPOSITOR)

    def test_second_bootstrap_rejected(self, orchestrator):
        with pytest.raises(AlreadyInitializedError):
            orchestrator.bootstrap()

        assert orchestrator.holders(Capability.ADMIN) == (PRIMARY,)

    def test_operations_before_bootstrap(self, orchestrator_factory):
        orchestrator = orchestrator_factory(bootstrap=False)

        assert not orchestrator.is_initialized()
        with pytest.raises(CustodyNotInitializedError):
            orchestrator.current_threshold()

    def test_duplicate_principals_rejected(self, orchestrator_factory):
        orchestrator = orchestrator_factory(
            bootstrap=False,
            principals_override=CustodyPrincipals(PRIMARY, PRIMARY, DEPOSITOR, CUSTODY),
        )

        with pytest.raises(ReservedIdentityError):
            orchestrator.bootstrap()

        assert not orchestrator.is_initialized()

    def test_empty_principal_rejected(self, orchestrator_factory):
        orchestrator = orchestrator_factory(
            bootstrap=False,
            principals_override=CustodyPrincipals(PRIMARY, EXECUTOR, "", CUSTODY),
        )

        with pytest.raises(InvalidIdentityError):
            orchestrator.bootstrap()

    def test_bootstrap_audited(self, orchestrator):
        events = orchestrator.audit_trail(AuditAction.CUSTODY_INITIALIZED)

        assert len(events) == 1
        assert events[0].payload["threshold"] == native(25)
        assert orchestrator.validate_audit_chain()


class TestRedirectionScenario:
    """Threshold 25: 30 accepted, 20 rejected."""

    def test_thirty_then_twenty(self, orchestrator, send_inbound, value_ledger):
        receipt = send_inbound(DEPOSITOR, native(30))

        assert receipt.amount == native(30)
        assert value_ledger.balance_of(PRIMARY) == native(30)
        assert orchestrator.cumulative_redirected() == native(30)

        with pytest.raises(BelowThresholdError) as exc_info:
            send_inbound(DEPOSITOR, native(20))

        assert "below dynamic threshold" in str(exc_info.value)
        assert value_ledger.balance_of(PRIMARY) == native(30)
        assert orchestrator.cumulative_redirected() == native(30)
        assert orchestrator.snapshot().redirect_count == 1

    def test_stranger_rejected_regardless_of_amount(self, orchestrator, send_inbound):
        with pytest.raises(UnauthorizedSenderError):
            send_inbound(OUTSIDER, native(1_000))

        assert orchestrator.cumulative_redirected() == 0

    def test_last_event_recorded(self, orchestrator, send_inbound):
        send_inbound(DEPOSITOR, native(30))

        assert orchestrator.snapshot().last_event_at is not None


class TestDualControlScenario:
    """Admin requests 100 to X, Executor approves."""

    def test_request_approve_execute(self, orchestrator, funded_asset):
        request = orchestrator.create_request(PRIMARY, 100, DESTINATION)

        assert request.primary_approved
        assert not request.executor_approved
        assert not request.executed
        assert [r.request_id for r in orchestrator.pending_requests()] == [request.request_id]

        executed = orchestrator.approve(EXECUTOR, request.request_id)

        assert executed.primary_approved and executed.executor_approved
        assert executed.executed
        assert funded_asset.balance_of(DESTINATION) == 100
        assert orchestrator.pending_requests() == []

        for caller in (PRIMARY, EXECUTOR):
            with pytest.raises(StateError):
                orchestrator.approve(caller, request.request_id)
        assert len(funded_asset.transfers) == 1

    def test_second_approval_reason(self, orchestrator, funded_asset):
        request = orchestrator.create_request(EXECUTOR, 100, DESTINATION)
        orchestrator.approve(PRIMARY, request.request_id)

        with pytest.raises(AlreadyExecutedError) as exc_info:
            orchestrator.approve(EXECUTOR, request.request_id)

        assert exc_info.value.code == "ALREADY_EXECUTED"

    def test_trace_of_request(self, orchestrator, funded_asset):
        request = orchestrator.create_request(PRIMARY, 100, DESTINATION)
        orchestrator.approve(EXECUTOR, request.request_id)

        trace = orchestrator.audit_trace("TransferRequest", str(request.request_id))

        assert trace.actions == (
            AuditAction.TRANSFER_REQUESTED,
            AuditAction.TRANSFER_APPROVED,
            AuditAction.TRANSFER_APPROVED,
            AuditAction.TRANSFER_EXECUTED,
        )

    def test_get_request_unknown(self, orchestrator):
        for request_id in (0, 1):
            with pytest.raises(TransferRequestNotFoundError):
                orchestrator.get_request(request_id)

    def test_get_request_snapshot(self, orchestrator):
        created = orchestrator.create_request(EXECUTOR, 5, DESTINATION)

        fetched = orchestrator.get_request(created.request_id)

        assert fetched.amount == 5
        assert fetched.destination == DESTINATION
        assert fetched.executor_approved


class TestThresholdScenario:
    """Oracle round trip."""

    def test_price_ten_cents_gives_fifty_units(self, orchestrator, send_inbound):
        correlation_id = orchestrator.request_threshold_update(EXECUTOR)

        change = orchestrator.fulfill_threshold_update(ORACLE, correlation_id, 100_000)

        assert change.current == native(50)
        assert orchestrator.current_threshold() == native(50)
        info = orchestrator.oracle_request(correlation_id)
        assert info.status is OracleRequestStatus.FULFILLED

        with pytest.raises(BelowThresholdError):
            send_inbound(DEPOSITOR, native(30))
        assert send_inbound(DEPOSITOR, native(50)).threshold == native(50)

    def test_unknown_oracle_request(self, orchestrator):
        assert orchestrator.oracle_request("nope") is None

    def test_manual_override(self, orchestrator):
        orchestrator.set_threshold(PRIMARY, native(10))

        assert orchestrator.current_threshold() == native(10)

    def test_admin_fulfillment_enabled(self, orchestrator_factory):
        orchestrator = orchestrator_factory(allow_admin_fulfillment=True)

        change = orchestrator.fulfill_threshold_update(PRIMARY, "ops-1", 200_000)

        assert change.current == native(25)
        assert orchestrator.oracle_request("ops-1").manual


class TestExecutorRotation:

    def test_old_executor_loses_approval_power(self, orchestrator, funded_asset):
        request = orchestrator.create_request(PRIMARY, 100, DESTINATION)

        rotation = orchestrator.rotate_executor(PRIMARY, OUTSIDER)

        assert rotation.previous == EXECUTOR
        assert orchestrator.snapshot().executor == OUTSIDER
        with pytest.raises(MissingCapabilityError) as exc_info:
            orchestrator.approve(EXECUTOR, request.request_id)
        assert exc_info.value.code == "MISSING_CAPABILITY"

        assert orchestrator.approve(OUTSIDER, request.request_id).executed

    def test_exactly_one_holder_after_each_rotation(self, orchestrator):
        orchestrator.rotate_executor(PRIMARY, OUTSIDER)
        orchestrator.rotate_executor(PRIMARY, "TNextExecutor000000000000000000000")

        assert orchestrator.holders(Capability.EXECUTOR) == (
            "TNextExecutor000000000000000000000",
        )
