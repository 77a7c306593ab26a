"""CustodyOrchestrator.from_config wiring."""

from custody_config import get_active_config
from custody_kernel.domain.capabilities import Capability
from custody_kernel.services.custody_orchestrator import CustodyOrchestrator
from tests.conftest import DEPOSITOR, EXECUTOR, ORACLE, PRIMARY, native


class TestFromConfig:

    def _build(self, session_factory, value_ledger, asset_ledger, price_oracle, clock):
        return CustodyOrchestrator.from_config(
            get_active_config(),
            session_factory=session_factory,
            value_ledger=value_ledger,
            asset_ledger=asset_ledger,
            price_oracle=price_oracle,
            clock=clock,
        )

    def test_principals_and_threshold(
        self, session_factory, value_ledger, asset_ledger, price_oracle, deterministic_clock,
    ):
        orchestrator = self._build(
            session_factory, value_ledger, asset_ledger, price_oracle, deterministic_clock,
        )

        orchestrator.bootstrap()

        assert orchestrator.principals.primary_controller == PRIMARY
        assert orchestrator.holders(Capability.EXECUTOR) == (EXECUTOR,)
        assert orchestrator.current_threshold() == native(25)
        assert orchestrator.snapshot().restricted_depositor == DEPOSITOR

    def test_oracle_settings_applied(
        self, session_factory, value_ledger, asset_ledger, price_oracle, deterministic_clock,
    ):
        orchestrator = self._build(
            session_factory, value_ledger, asset_ledger, price_oracle, deterministic_clock,
        )
        orchestrator.bootstrap()

        correlation_id = orchestrator.request_threshold_update(PRIMARY)
        change = orchestrator.fulfill_threshold_update(ORACLE, correlation_id, 100_000)

        assert price_oracle.requests == [("native-usd-price", 0)]
        assert change.current == native(50)
