"""
ORM immutability listeners.

Covers:
- Executed transfer requests are frozen
- Request amount / destination are frozen from creation
- Approval flags never reset
- Audit events are append-only
- Custody principals are fixed
- The primary controller's Admin grant cannot be deleted
"""

import pytest
from sqlalchemy import select

from custody_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from custody_kernel.exceptions import ImmutabilityViolationError
from custody_kernel.models.audit_event import AuditEvent
from custody_kernel.models.custody_state import load_custody_state
from custody_kernel.models.role_grant import RoleGrantModel
from custody_kernel.models.transfer_request import TransferRequestModel
from tests.conftest import DESTINATION, EXECUTOR, OUTSIDER, PRIMARY


def _request_model(session, request_id):
    return session.execute(
        select(TransferRequestModel).where(TransferRequestModel.request_seq == request_id)
    ).scalar_one()


class TestTransferRequestImmutability:

    def test_amount_frozen(self, approval_workflow, session):
        request = approval_workflow.create_request(PRIMARY, 100, DESTINATION)
        model = _request_model(session, request.request_id)

        model.amount = 1_000_000
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_destination_frozen(self, approval_workflow, session):
        request = approval_workflow.create_request(PRIMARY, 100, DESTINATION)
        model = _request_model(session, request.request_id)

        model.destination = OUTSIDER
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_flag_cannot_reset(self, approval_workflow, session):
        request = approval_workflow.create_request(PRIMARY, 100, DESTINATION)
        model = _request_model(session, request.request_id)

        model.primary_approved = False
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_executed_request_frozen(self, approval_workflow, funded_asset, session):
        request = approval_workflow.create_request(PRIMARY, 100, DESTINATION)
        approval_workflow.approve(EXECUTOR, request.request_id)
        model = _request_model(session, request.request_id)

        model.executed_by = OUTSIDER
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, approval_workflow, session):
        request = approval_workflow.create_request(PRIMARY, 100, DESTINATION)

        session.delete(_request_model(session, request.request_id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestAuditEventImmutability:

    def test_update_blocked(self, orchestrator, session):
        event = session.execute(select(AuditEvent).limit(1)).scalar_one()

        event.actor_id = OUTSIDER
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, orchestrator, session):
        event = session.execute(select(AuditEvent).limit(1)).scalar_one()

        session.delete(event)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestCustodyStateImmutability:

    def test_primary_controller_fixed(self, orchestrator, session):
        state = load_custody_state(session)

        state.primary_controller = OUTSIDER
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_mutable_fields_allowed(self, orchestrator, session):
        state = load_custody_state(session)

        state.threshold = 1
        session.flush()

        assert load_custody_state(session).threshold == 1


class TestRoleGrantImmutability:

    def test_primary_admin_row_cannot_be_deleted(self, orchestrator, session):
        grant = session.execute(
            select(RoleGrantModel).where(
                RoleGrantModel.identity == PRIMARY,
                RoleGrantModel.capability == "admin",
            )
        ).scalar_one()

        session.delete(grant)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestListenerRegistration:

    def test_registration_is_idempotent(self, orchestrator, session):
        register_immutability_listeners()
        register_immutability_listeners()
        unregister_immutability_listeners()
        try:
            event = session.execute(select(AuditEvent).limit(1)).scalar_one()
            event.actor_id = OUTSIDER
            session.flush()
        finally:
            session.rollback()
            register_immutability_listeners()
