"""
Custody Orchestrator - the exposed surface of the custody kernel.

The Orchestrator ties together:
- RoleRegistry: capability checks
- CircuitBreaker: pause gate
- ReentrancyGuard: latch around outbound calls
- RedirectionGate, ThresholdController, ApprovalWorkflow, AdminOperations
- Auditor: hash-chained event log

Every public operation runs inside ``_unit_of_work``:

    RLock acquired
      |
      +-- outermost call:  new session --> body --+--> commit   (success)
      |                                           |
      |                                           +--> rollback (any error) --> re-raise
      |
      +-- same-thread call while one is in flight (a collaborator calling
          back): joins the in-flight session inside a SAVEPOINT, so a
          failing nested call rolls back only its own writes.

The lock serializes operations from different threads; a failed operation
leaves no durable trace beyond the log line.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Iterator
from uuid import uuid4

from sqlalchemy.orm import Session, sessionmaker

from custody_kernel.db.immutability import register_immutability_listeners
from custody_kernel.domain.capabilities import PRIMARY_CONTROLLER_CAPABILITIES, Capability
from custody_kernel.domain.clock import Clock, SystemClock
from custody_kernel.domain.collaborators import AssetLedger, PriceOracle, ValueLedger
from custody_kernel.domain.dtos import (
    BreakerState,
    CustodySnapshot,
    EmergencySweepSignal,
    ExecutorRotation,
    OracleRequestInfo,
    RedirectionReceipt,
    ThresholdChange,
    WithdrawalReceipt,
)
from custody_kernel.domain.threshold import ThresholdParameters
from custody_kernel.domain.transfer import TransferRequest
from custody_kernel.domain.validation import require_identity
from custody_kernel.exceptions import (
    AlreadyInitializedError,
    CollaboratorFailure,
    CustodyKernelError,
    DepositorRequestRejectedError,
    ReservedIdentityError,
    TransferRequestNotFoundError,
)
from custody_kernel.logging_config import LogContext, get_logger
from custody_kernel.models.audit_event import AuditAction
from custody_kernel.models.custody_state import CustodyStateModel, find_custody_state
from custody_kernel.selectors.custody_selector import CustodySelector
from custody_kernel.services.admin_operations import AdminOperations
from custody_kernel.services.approval_workflow import ApprovalWorkflow
from custody_kernel.services.auditor_service import AuditorService, AuditTrace, AuditTraceEntry
from custody_kernel.services.circuit_breaker import CircuitBreaker
from custody_kernel.services.reentrancy_guard import ReentrancyGuard
from custody_kernel.services.redirection_gate import RedirectionGate
from custody_kernel.services.role_registry import RoleRegistry
from custody_kernel.services.sequence_service import SequenceService
from custody_kernel.services.threshold_controller import OracleSettings, ThresholdController

if TYPE_CHECKING:
    from custody_config.schema import CustodyConfiguration

logger = get_logger("services.custody_orchestrator")


@dataclass(frozen=True)
class CustodyPrincipals:
    """Identities fixed at bootstrap."""

    primary_controller: str
    executor: str
    restricted_depositor: str
    custody_account: str


@dataclass(frozen=True)
class _Services:
    """Services bound to one unit-of-work session."""

    session: Session
    auditor: AuditorService
    roles: RoleRegistry
    breaker: CircuitBreaker
    redirection: RedirectionGate
    threshold: ThresholdController
    workflow: ApprovalWorkflow
    admin: AdminOperations
    selector: CustodySelector


class CustodyOrchestrator:
    """
    Single entry point for operators and integrators.

    Each mutating method takes the acting identity first (``caller`` or
    ``sender``) and either completes atomically or raises a typed
    CustodyKernelError with nothing persisted.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        principals: CustodyPrincipals,
        threshold_parameters: ThresholdParameters,
        oracle_settings: OracleSettings,
        value_ledger: ValueLedger,
        asset_ledger: AssetLedger,
        price_oracle: PriceOracle,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._principals = principals
        self._threshold_parameters = threshold_parameters
        self._oracle_settings = oracle_settings
        self._value_ledger = value_ledger
        self._asset_ledger = asset_ledger
        self._price_oracle = price_oracle
        self._clock = clock or SystemClock()

        self._lock = threading.RLock()
        self._guard = ReentrancyGuard()
        self._active_session: Session | None = None

        register_immutability_listeners()

    @classmethod
    def from_config(
        cls,
        config: CustodyConfiguration,
        session_factory: sessionmaker[Session],
        value_ledger: ValueLedger,
        asset_ledger: AssetLedger,
        price_oracle: PriceOracle,
        clock: Clock | None = None,
    ) -> CustodyOrchestrator:
        """Build an orchestrator from a loaded custody configuration."""
        principals = CustodyPrincipals(
            primary_controller=config.principals.primary_controller,
            executor=config.principals.executor,
            restricted_depositor=config.principals.restricted_depositor,
            custody_account=config.principals.custody_account,
        )
        threshold = config.threshold
        parameters = ThresholdParameters(
            baseline=threshold.baseline,
            target_fiat_value=Decimal(threshold.target_fiat_value),
            price_decimals=threshold.price_decimals,
            native_decimals=threshold.native_decimals,
        )
        settings = OracleSettings(
            oracle_identity=config.principals.oracle,
            job_id=config.oracle.job_id,
            fee=config.oracle.fee,
            allow_admin_fulfillment=config.oracle.allow_admin_fulfillment,
        )
        logger.info(
            "orchestrator_configured",
            extra={
                "config_id": config.config_id,
                "config_version": config.version,
                "checksum": config.checksum,
            },
        )
        return cls(
            session_factory=session_factory,
            principals=principals,
            threshold_parameters=parameters,
            oracle_settings=settings,
            value_ledger=value_ledger,
            asset_ledger=asset_ledger,
            price_oracle=price_oracle,
            clock=clock,
        )

    @property
    def principals(self) -> CustodyPrincipals:
        return self._principals

    @property
    def guard(self) -> ReentrancyGuard:
        return self._guard

    # ------------------------------------------------------------------
    # Transaction boundary
    # ------------------------------------------------------------------

    def _services(self, session: Session) -> _Services:
        auditor = AuditorService(session, self._clock)
        roles = RoleRegistry(session, auditor, self._clock)
        breaker = CircuitBreaker(session, roles, auditor)
        return _Services(
            session=session,
            auditor=auditor,
            roles=roles,
            breaker=breaker,
            redirection=RedirectionGate(
                session, breaker, self._guard, auditor, self._value_ledger, self._clock,
            ),
            threshold=ThresholdController(
                session,
                roles,
                breaker,
                auditor,
                self._price_oracle,
                self._threshold_parameters,
                self._oracle_settings,
                self._clock,
            ),
            workflow=ApprovalWorkflow(
                session, roles, breaker, self._guard, auditor, self._asset_ledger, self._clock,
            ),
            admin=AdminOperations(
                session,
                roles,
                breaker,
                self._guard,
                auditor,
                self._value_ledger,
                self._asset_ledger,
                self._clock,
            ),
            selector=CustodySelector(session),
        )

    @contextmanager
    def _unit_of_work(self, operation: str, actor: str | None) -> Iterator[_Services]:
        """One transaction per operation; see the module docstring."""
        with self._lock, LogContext.bind(actor_id=actor, operation=operation):
            if self._active_session is not None:
                with self._nested(self._active_session, operation) as services:
                    yield services
                return

            session = self._session_factory()
            self._active_session = session
            t0 = time.monotonic()
            try:
                with LogContext.bind(correlation_id=str(uuid4())):
                    yield self._services(session)
                    session.commit()
                    logger.debug(
                        "operation_committed",
                        extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    )
            except CustodyKernelError as exc:
                session.rollback()
                self._log_rejection(exc)
                raise
            except Exception:
                session.rollback()
                logger.error("operation_failed", exc_info=True)
                raise
            finally:
                self._active_session = None
                session.close()

    @contextmanager
    def _nested(self, session: Session, operation: str) -> Iterator[_Services]:
        savepoint = session.begin_nested()
        logger.debug("nested_operation_started", extra={"nested_operation": operation})
        try:
            yield self._services(session)
        except Exception as exc:
            if savepoint.is_active:
                savepoint.rollback()
            if isinstance(exc, CustodyKernelError):
                self._log_rejection(exc)
            raise
        else:
            savepoint.commit()

    @staticmethod
    def _log_rejection(exc: CustodyKernelError) -> None:
        if isinstance(exc, CollaboratorFailure):
            logger.error("operation_failed", extra={"code": exc.code, "reason": str(exc)})
        else:
            logger.warning("operation_rejected", extra={"code": exc.code, "reason": str(exc)})

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def bootstrap(self) -> CustodySnapshot:
        """
        Create the custody aggregate and the initial grants, exactly once.

        Raises:
            AlreadyInitializedError: the store already holds custody state.
            InvalidIdentityError / ReservedIdentityError: bad principals.
        """
        p = self._principals
        with self._unit_of_work("bootstrap", p.primary_controller) as s:
            existing = find_custody_state(s.session)
            if existing is not None:
                raise AlreadyInitializedError(existing.primary_controller)

            identities = {
                "primary_controller": p.primary_controller,
                "executor": p.executor,
                "restricted_depositor": p.restricted_depositor,
                "custody_account": p.custody_account,
            }
            for field_name, value in identities.items():
                require_identity(field_name, value)
            seen: dict[str, str] = {}
            for field_name, value in identities.items():
                if value in seen:
                    raise ReservedIdentityError(value, f"is both {seen[value]} and {field_name}")
                seen[value] = field_name

            SequenceService(s.session).initialize_sequences()
            s.session.add(
                CustodyStateModel(
                    primary_controller=p.primary_controller,
                    restricted_depositor=p.restricted_depositor,
                    custody_account=p.custody_account,
                    paused=False,
                    threshold=self._threshold_parameters.baseline,
                    cumulative_redirected=0,
                    redirect_count=0,
                    initialized_at=self._clock.now(),
                )
            )
            s.session.flush()

            for capability in PRIMARY_CONTROLLER_CAPABILITIES:
                s.roles.grant(capability, p.primary_controller, p.primary_controller)
            s.roles.grant(Capability.EXECUTOR, p.executor, p.primary_controller)

            s.auditor.record_custody_initialized(
                actor_id=p.primary_controller,
                primary_controller=p.primary_controller,
                executor=p.executor,
                restricted_depositor=p.restricted_depositor,
                custody_account=p.custody_account,
                threshold=self._threshold_parameters.baseline,
            )
            logger.info(
                "custody_bootstrapped",
                extra={
                    "primary_controller": p.primary_controller,
                    "custody_account": p.custody_account,
                    "threshold": self._threshold_parameters.baseline,
                },
            )
            return s.selector.snapshot()

    def is_initialized(self) -> bool:
        with self._unit_of_work("is_initialized", None) as s:
            return find_custody_state(s.session) is not None

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def pause(self, caller: str) -> BreakerState:
        with self._unit_of_work("pause", caller) as s:
            return s.breaker.pause(caller)

    def unpause(self, caller: str) -> BreakerState:
        with self._unit_of_work("unpause", caller) as s:
            return s.breaker.unpause(caller)

    # ------------------------------------------------------------------
    # Redirection
    # ------------------------------------------------------------------

    def on_inbound_value(
        self,
        sender: str,
        amount: int,
        origin: str | None = None,
    ) -> RedirectionReceipt:
        """Value from ``sender`` arrived at the custody account."""
        with self._unit_of_work("on_inbound_value", sender) as s:
            return s.redirection.on_inbound_value(sender, amount, origin)

    # ------------------------------------------------------------------
    # Threshold
    # ------------------------------------------------------------------

    def request_threshold_update(self, caller: str) -> str:
        with self._unit_of_work("request_update", caller) as s:
            return s.threshold.request_update(caller)

    def fulfill_threshold_update(
        self,
        caller: str,
        correlation_id: str,
        price_sample: int,
    ) -> ThresholdChange:
        with self._unit_of_work("fulfill", caller) as s:
            return s.threshold.fulfill(caller, correlation_id, price_sample)

    def set_threshold(self, caller: str, new_value: int) -> ThresholdChange:
        with self._unit_of_work("set_threshold", caller) as s:
            return s.threshold.set_threshold(caller, new_value)

    # ------------------------------------------------------------------
    # Dual-control workflow
    # ------------------------------------------------------------------

    def create_request(self, caller: str, amount: int, destination: str) -> TransferRequest:
        """
        Open a transfer request.

        The restricted depositor's call is rejected, but its intent is
        committed to the event log first, in a unit of work of its own.
        """
        try:
            with self._unit_of_work("create_request", caller) as s:
                return s.workflow.create_request(caller, amount, destination)
        except DepositorRequestRejectedError as exc:
            with self._unit_of_work("record_transfer_intent", caller) as s:
                s.workflow.record_depositor_intent(exc.depositor, exc.amount, exc.destination)
            raise

    def approve(self, caller: str, request_id: int) -> TransferRequest:
        with self._unit_of_work("approve", caller) as s:
            return s.workflow.approve(caller, request_id)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def rotate_executor(self, caller: str, new_executor: str) -> ExecutorRotation:
        with self._unit_of_work("rotate_executor", caller) as s:
            return s.admin.rotate_executor(caller, new_executor)

    def withdraw_all(self, caller: str) -> WithdrawalReceipt:
        with self._unit_of_work("withdraw_all", caller) as s:
            return s.admin.withdraw_all(caller)

    def emergency_sweep(self, caller: str) -> EmergencySweepSignal:
        with self._unit_of_work("emergency_sweep", caller) as s:
            return s.admin.emergency_sweep(caller)

    def fund_restricted_depositor(self, caller: str, amount: int) -> int:
        with self._unit_of_work("fund_restricted_depositor", caller) as s:
            return s.admin.fund_restricted_depositor(caller, amount)

    def sweep_excess_value(self, caller: str) -> int:
        with self._unit_of_work("sweep_excess_value", caller) as s:
            return s.admin.sweep_excess_value(caller)

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------

    def current_threshold(self) -> int:
        with self._unit_of_work("current_threshold", None) as s:
            return s.selector.current_threshold()

    def cumulative_redirected(self) -> int:
        with self._unit_of_work("cumulative_redirected", None) as s:
            return s.selector.cumulative_redirected()

    def is_paused(self) -> bool:
        with self._unit_of_work("is_paused", None) as s:
            return s.selector.is_paused()

    def snapshot(self) -> CustodySnapshot:
        with self._unit_of_work("snapshot", None) as s:
            return s.selector.snapshot()

    def get_request(self, request_id: int) -> TransferRequest:
        """Request snapshot by id.

        Raises:
            TransferRequestNotFoundError: unknown id, including 0.
        """
        with self._unit_of_work("get_request", None) as s:
            request = s.selector.transfer_request(request_id)
            if request is None:
                raise TransferRequestNotFoundError(request_id)
            return request

    def pending_requests(self) -> list[TransferRequest]:
        with self._unit_of_work("pending_requests", None) as s:
            return s.selector.transfer_requests(pending_only=True)

    def oracle_request(self, correlation_id: str) -> OracleRequestInfo | None:
        with self._unit_of_work("oracle_request", None) as s:
            return s.selector.oracle_request(correlation_id)

    def has_capability(self, capability: Capability, identity: str) -> bool:
        with self._unit_of_work("has_capability", None) as s:
            return s.roles.has(capability, identity)

    def holders(self, capability: Capability) -> tuple[str, ...]:
        with self._unit_of_work("holders", None) as s:
            return s.roles.holders(capability)

    def audit_trail(self, action: AuditAction | None = None) -> list[AuditTraceEntry]:
        """Emitted events in order, optionally of one action."""
        with self._unit_of_work("audit_trail", None) as s:
            return s.auditor.get_events(action)

    def audit_trace(self, entity_type: str, entity_id: str) -> AuditTrace:
        with self._unit_of_work("audit_trace", None) as s:
            return s.auditor.get_trace(entity_type, entity_id)

    def validate_audit_chain(self) -> bool:
        with self._unit_of_work("validate_audit_chain", None) as s:
            return s.auditor.validate_chain()
