"""
Pytest fixtures for the custody kernel test suite.

Provides:
- A fresh in-memory SQLite store per test (StaticPool, SAVEPOINT-capable)
- In-memory ledger, asset and oracle collaborators
- A bootstrapped CustodyOrchestrator and a factory for custom ones
- Logging fixtures (structured JSON capture)

The orchestrator and the ``session`` fixture share one SQLite connection.
A test either drives the orchestrator or works on ``session`` directly
between orchestrator calls, never with both transactions open at once.
"""

import json
import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy.orm import sessionmaker

from custody_kernel.db.engine import create_engine_from_url, create_tables
from custody_kernel.db.immutability import register_immutability_listeners
from custody_kernel.domain.clock import DeterministicClock
from custody_kernel.domain.threshold import ThresholdParameters
from custody_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from custody_kernel.services.admin_operations import AdminOperations
from custody_kernel.services.approval_workflow import ApprovalWorkflow
from custody_kernel.services.auditor_service import AuditorService
from custody_kernel.services.circuit_breaker import CircuitBreaker
from custody_kernel.services.custody_orchestrator import CustodyOrchestrator, CustodyPrincipals
from custody_kernel.services.redirection_gate import RedirectionGate
from custody_kernel.services.role_registry import RoleRegistry
from custody_kernel.services.threshold_controller import OracleSettings, ThresholdController

PRIMARY = "THEJwQ8iiaEFbTa18jzPa8v61eo1yQ3YwZ"
EXECUTOR = "TPG3Lf4YJKZYhHsyfRRnsFxtKMP2zskfA2"
DEPOSITOR = "TK7UMoA1eUi3NmqEUKFNU7UdxXVBep9VUZ"
CUSTODY = "custody-account"
ORACLE = "price-oracle"
OUTSIDER = "TQn9Y2khEsLJW1ChVWFMSMeRDow5KcbLSE"
DESTINATION = "TVj7RNVHy6thbM7BWdSe9G6gXwKhjhdNZS"

NATIVE = 1_000_000


def native(units: int) -> int:
    """Whole native units in smallest units."""
    return units * NATIVE


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture custody_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.pause(PRIMARY)
            logs = captured_logs()
            assert any(r["message"] == "system_paused" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("custody_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# In-memory collaborators
# =============================================================================


class InMemoryValueLedger:
    """Native value ledger; ``transfer`` always spends from the custody account."""

    def __init__(self, custody_account: str):
        self.custody_account = custody_account
        self.balances: dict[str, int] = defaultdict(int)
        self.contracts: set[str] = set()
        self.transfers: list[tuple[str, int]] = []
        self.refuse = False
        self.raise_error: Exception | None = None
        self.on_transfer = None

    def credit(self, identity: str, amount: int) -> None:
        self.balances[identity] += amount

    def debit(self, identity: str, amount: int) -> None:
        self.balances[identity] -= amount

    def transfer(self, destination: str, amount: int) -> bool:
        if self.raise_error is not None:
            raise self.raise_error
        if self.refuse or self.balances[self.custody_account] < amount:
            return False
        self.balances[self.custody_account] -= amount
        self.balances[destination] += amount
        self.transfers.append((destination, amount))
        if self.on_transfer is not None:
            self.on_transfer(destination, amount)
        return True

    def balance_of(self, identity: str) -> int:
        return self.balances[identity]

    def is_contract(self, identity: str) -> bool:
        return identity in self.contracts


class InMemoryAssetLedger:
    """Fungible asset with allowances; the custody account is the spender."""

    def __init__(self, custody_account: str):
        self.custody_account = custody_account
        self.balances: dict[str, int] = defaultdict(int)
        self.allowances: dict[tuple[str, str], int] = defaultdict(int)
        self.transfers: list[tuple[str, str, int]] = []
        self.refuse = False
        self.raise_error: Exception | None = None
        self.on_transfer = None

    def mint(self, identity: str, amount: int) -> None:
        self.balances[identity] += amount

    def approve(self, owner: str, spender: str, amount: int) -> None:
        self.allowances[(owner, spender)] = amount

    def transfer_from(self, owner: str, destination: str, amount: int) -> bool:
        if self.raise_error is not None:
            raise self.raise_error
        key = (owner, self.custody_account)
        if self.refuse or self.allowances[key] < amount or self.balances[owner] < amount:
            return False
        self.allowances[key] -= amount
        self.balances[owner] -= amount
        self.balances[destination] += amount
        self.transfers.append((owner, destination, amount))
        if self.on_transfer is not None:
            self.on_transfer(owner, destination, amount)
        return True

    def balance_of(self, identity: str) -> int:
        return self.balances[identity]

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances[(owner, spender)]


class StubPriceOracle:
    """Hands out sequential correlation ids and records each request."""

    def __init__(self):
        self.requests: list[tuple[str, int]] = []
        self.raise_error: Exception | None = None
        self.next_id: str | None = None

    def request(self, job_id: str, fee: int) -> str:
        if self.raise_error is not None:
            raise self.raise_error
        self.requests.append((job_id, fee))
        if self.next_id is not None:
            return self.next_id
        return f"req-{len(self.requests)}"


# =============================================================================
# Store and clock fixtures
# =============================================================================


@pytest.fixture
def deterministic_clock():
    """Clock pinned to 2024-01-01 12:00 UTC."""
    return DeterministicClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_engine_from_url("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    """A session for direct service tests; rolled back at teardown."""
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def auditor_service(session, deterministic_clock):
    return AuditorService(session, deterministic_clock)


# =============================================================================
# Collaborator fixtures
# =============================================================================


@pytest.fixture
def value_ledger():
    return InMemoryValueLedger(CUSTODY)


@pytest.fixture
def asset_ledger():
    return InMemoryAssetLedger(CUSTODY)


@pytest.fixture
def price_oracle():
    return StubPriceOracle()


# =============================================================================
# Orchestrator fixtures
# =============================================================================


@pytest.fixture
def principals():
    return CustodyPrincipals(
        primary_controller=PRIMARY,
        executor=EXECUTOR,
        restricted_depositor=DEPOSITOR,
        custody_account=CUSTODY,
    )


@pytest.fixture
def threshold_parameters():
    """25 native units baseline; 5 fiat target; 6/6 decimals."""
    return ThresholdParameters(
        baseline=native(25),
        target_fiat_value=Decimal("5"),
        price_decimals=6,
        native_decimals=6,
    )


@pytest.fixture
def orchestrator_factory(
    session_factory,
    principals,
    threshold_parameters,
    value_ledger,
    asset_ledger,
    price_oracle,
    deterministic_clock,
):
    """Build (and by default bootstrap) an orchestrator on the test store."""

    def _make(
        bootstrap: bool = True,
        allow_admin_fulfillment: bool = False,
        principals_override: CustodyPrincipals | None = None,
    ) -> CustodyOrchestrator:
        orchestrator = CustodyOrchestrator(
            session_factory=session_factory,
            principals=principals_override or principals,
            threshold_parameters=threshold_parameters,
            oracle_settings=OracleSettings(
                oracle_identity=ORACLE,
                job_id="native-usd-price",
                fee=0,
                allow_admin_fulfillment=allow_admin_fulfillment,
            ),
            value_ledger=value_ledger,
            asset_ledger=asset_ledger,
            price_oracle=price_oracle,
            clock=deterministic_clock,
        )
        if bootstrap:
            orchestrator.bootstrap()
        return orchestrator

    return _make


@pytest.fixture
def orchestrator(orchestrator_factory):
    """Bootstrapped orchestrator with the default principals."""
    return orchestrator_factory()


@pytest.fixture
def send_inbound(orchestrator, value_ledger):
    """
    Deliver value to the custody account and run the receive path.

    A rejected delivery is returned to the sender, as the host ledger would
    revert the whole transaction.
    """

    def _send(sender: str, amount: int, origin: str | None = None):
        value_ledger.credit(CUSTODY, amount)
        try:
            return orchestrator.on_inbound_value(sender, amount, origin=origin)
        except Exception:
            value_ledger.debit(CUSTODY, amount)
            raise

    return _send


@pytest.fixture
def fresh_custody():
    """
    Factory for fully independent custody systems.

    Property tests run many examples inside one test function, so each
    example builds its own store and collaborators through this factory.
    """

    engines = []

    def _make():
        engine = create_engine_from_url("sqlite://")
        create_tables(engine)
        engines.append(engine)
        value = InMemoryValueLedger(CUSTODY)
        asset = InMemoryAssetLedger(CUSTODY)
        orchestrator = CustodyOrchestrator(
            session_factory=sessionmaker(bind=engine, expire_on_commit=False),
            principals=CustodyPrincipals(PRIMARY, EXECUTOR, DEPOSITOR, CUSTODY),
            threshold_parameters=ThresholdParameters(
                baseline=native(25), target_fiat_value=Decimal("5"),
            ),
            oracle_settings=OracleSettings(oracle_identity=ORACLE, job_id="native-usd-price"),
            value_ledger=value,
            asset_ledger=asset,
            price_oracle=StubPriceOracle(),
            clock=DeterministicClock(),
        )
        orchestrator.bootstrap()
        return orchestrator, value, asset

    yield _make

    for engine in engines:
        engine.dispose()


# =============================================================================
# Service fixtures (bound to ``session`` after bootstrap has committed)
# =============================================================================


@pytest.fixture
def reentrancy_guard(orchestrator):
    return orchestrator.guard


@pytest.fixture
def role_registry(orchestrator, session, auditor_service, deterministic_clock):
    return RoleRegistry(session, auditor_service, deterministic_clock)


@pytest.fixture
def circuit_breaker(session, role_registry, auditor_service):
    return CircuitBreaker(session, role_registry, auditor_service)


@pytest.fixture
def redirection_gate(
    session, circuit_breaker, reentrancy_guard, auditor_service, value_ledger, deterministic_clock,
):
    return RedirectionGate(
        session, circuit_breaker, reentrancy_guard, auditor_service, value_ledger, deterministic_clock,
    )


@pytest.fixture
def threshold_controller_factory(
    session,
    role_registry,
    circuit_breaker,
    auditor_service,
    price_oracle,
    threshold_parameters,
    deterministic_clock,
):
    def _make(allow_admin_fulfillment: bool = False) -> ThresholdController:
        return ThresholdController(
            session,
            role_registry,
            circuit_breaker,
            auditor_service,
            price_oracle,
            threshold_parameters,
            OracleSettings(
                oracle_identity=ORACLE,
                job_id="native-usd-price",
                fee=7,
                allow_admin_fulfillment=allow_admin_fulfillment,
            ),
            deterministic_clock,
        )

    return _make


@pytest.fixture
def threshold_controller(threshold_controller_factory):
    return threshold_controller_factory()


@pytest.fixture
def approval_workflow(
    session,
    role_registry,
    circuit_breaker,
    reentrancy_guard,
    auditor_service,
    asset_ledger,
    deterministic_clock,
):
    return ApprovalWorkflow(
        session,
        role_registry,
        circuit_breaker,
        reentrancy_guard,
        auditor_service,
        asset_ledger,
        deterministic_clock,
    )


@pytest.fixture
def admin_operations(
    session,
    role_registry,
    circuit_breaker,
    reentrancy_guard,
    auditor_service,
    value_ledger,
    asset_ledger,
    deterministic_clock,
):
    return AdminOperations(
        session,
        role_registry,
        circuit_breaker,
        reentrancy_guard,
        auditor_service,
        value_ledger,
        asset_ledger,
        deterministic_clock,
    )


@pytest.fixture
def funded_asset(asset_ledger):
    """Give the depositor 1000 asset units and a matching custody allowance."""
    asset_ledger.mint(DEPOSITOR, 1_000)
    asset_ledger.approve(DEPOSITOR, CUSTODY, 1_000)
    return asset_ledger
