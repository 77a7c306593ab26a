"""
Module-level engine management (custody_kernel/db/engine.py).

Covers:
- Accessors raise before init_engine_from_url()
- session_scope commits on success and rolls back on error
- drop_tables / create_tables against the module engine
- reset_engine clears module state
"""

import pytest
from sqlalchemy import inspect

from custody_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
    session_scope,
)
from custody_kernel.services.sequence_service import SequenceService


@pytest.fixture
def module_engine():
    engine = init_engine_from_url("sqlite://")
    create_tables()
    yield engine
    reset_engine()


class TestUninitialized:

    def test_accessors_raise(self):
        reset_engine()

        for accessor in (get_engine, get_session, get_session_factory):
            with pytest.raises(RuntimeError, match="Engine not initialized"):
                accessor()
        assert not is_postgres()


class TestSessionScope:

    def test_commit_on_success(self, module_engine):
        with session_scope() as session:
            SequenceService(session).next_value("scope")

        with session_scope() as session:
            assert SequenceService(session).current_value("scope") == 1

    def test_rollback_on_error(self, module_engine):
        with pytest.raises(ZeroDivisionError):
            with session_scope() as session:
                SequenceService(session).next_value("scope")
                1 / 0

        with session_scope() as session:
            assert SequenceService(session).current_value("scope") is None


class TestSchema:

    def test_drop_and_recreate(self, module_engine):
        assert "custody_state" in inspect(get_engine()).get_table_names()

        drop_tables()
        assert inspect(get_engine()).get_table_names() == []

        create_tables()
        assert "audit_events" in inspect(get_engine()).get_table_names()

    def test_sqlite_is_not_postgres(self, module_engine):
        assert module_engine is get_engine()
        assert not is_postgres()
