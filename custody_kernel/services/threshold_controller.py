"""
ThresholdController -- the redirection threshold and its price-oracle loop.

Responsibility:
    Owns ``threshold`` on the custody aggregate.  Three ways to change it:

        request_update()  --> PriceOracle.request() --> correlation id (pending)
        fulfill(id, price) --> threshold = target * 10**pd * 10**nd // price
        set_threshold(v)  --> direct Admin override

Architecture position:
    Kernel > Services.  Pure arithmetic lives in domain/threshold.py.

Invariants enforced:
    - threshold > 0 at all times.
    - A correlation id is fulfilled at most once.
    - fulfill() is accepted from the oracle identity, or from an Admin when
      admin fulfillment is enabled.  An unknown correlation id is an error
      for the oracle and a manual fulfillment for an Admin.

Failure modes:
    - MissingCapabilityError, UnauthorizedFulfillmentError
    - OracleRequestFailedError, UnknownCorrelationIdError,
      OracleRequestAlreadyFulfilledError
    - InvalidPriceSampleError, InvalidThresholdError
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from custody_kernel.domain.capabilities import APPROVER_CAPABILITIES, Capability
from custody_kernel.domain.clock import Clock, SystemClock
from custody_kernel.domain.collaborators import PriceOracle
from custody_kernel.domain.dtos import OracleRequestInfo, OracleRequestStatus, ThresholdChange
from custody_kernel.domain.threshold import ThresholdParameters, compute_threshold
from custody_kernel.exceptions import (
    InvalidThresholdError,
    OracleRequestAlreadyFulfilledError,
    OracleRequestFailedError,
    UnauthorizedFulfillmentError,
    UnknownCorrelationIdError,
)
from custody_kernel.logging_config import get_logger
from custody_kernel.models.custody_state import load_custody_state
from custody_kernel.models.oracle_request import OracleRequestModel
from custody_kernel.services.auditor_service import AuditorService
from custody_kernel.services.circuit_breaker import CircuitBreaker
from custody_kernel.services.role_registry import RoleRegistry

logger = get_logger("services.threshold_controller")

SOURCE_MANUAL = "manual"
SOURCE_ORACLE = "oracle"
SOURCE_ADMIN_FULFILLMENT = "admin_fulfillment"


@dataclass(frozen=True)
class OracleSettings:
    """Who the oracle is and how requests are priced."""

    oracle_identity: str
    job_id: str
    fee: int = 0
    allow_admin_fulfillment: bool = False


class ThresholdController:
    """Threshold state plus the request/fulfill pair."""

    def __init__(
        self,
        session: Session,
        roles: RoleRegistry,
        breaker: CircuitBreaker,
        auditor: AuditorService,
        oracle: PriceOracle,
        parameters: ThresholdParameters,
        settings: OracleSettings,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._roles = roles
        self._breaker = breaker
        self._auditor = auditor
        self._oracle = oracle
        self._parameters = parameters
        self._settings = settings
        self._clock = clock or SystemClock()

    def current(self) -> int:
        return load_custody_state(self._session).threshold

    def _find_request(self, correlation_id: str) -> OracleRequestModel | None:
        return self._session.execute(
            select(OracleRequestModel).where(
                OracleRequestModel.correlation_id == correlation_id,
            )
        ).scalar_one_or_none()

    def get_oracle_request(self, correlation_id: str) -> OracleRequestInfo | None:
        model = self._find_request(correlation_id)
        return model.to_dto() if model is not None else None

    def request_update(self, caller: str) -> str:
        """
        Ask the oracle for a fresh price sample.

        Returns:
            The oracle's correlation id, persisted as a pending request.
        """
        self._breaker.require_running("request_update")
        self._roles.require_any(APPROVER_CAPABILITIES, caller)

        job_id = self._settings.job_id
        try:
            correlation_id = self._oracle.request(job_id, self._settings.fee)
        except Exception as exc:
            logger.error(
                "oracle_request_raised",
                extra={"job_id": job_id},
                exc_info=True,
            )
            raise OracleRequestFailedError(job_id, str(exc)) from exc

        if not correlation_id:
            raise OracleRequestFailedError(job_id, "empty correlation id")
        correlation_id = str(correlation_id)
        if self._find_request(correlation_id) is not None:
            raise OracleRequestFailedError(
                job_id, f"duplicate correlation id {correlation_id}",
            )

        self._session.add(
            OracleRequestModel(
                correlation_id=correlation_id,
                job_id=job_id,
                requested_by=caller,
                requested_at=self._clock.now(),
                status=OracleRequestStatus.PENDING.value,
                manual=False,
            )
        )
        self._session.flush()
        self._auditor.record_threshold_update_requested(
            caller, correlation_id, job_id, self._settings.fee,
        )

        logger.info(
            "oracle_request_submitted",
            extra={"correlation_id": correlation_id, "job_id": job_id},
        )
        return correlation_id

    def fulfill(self, caller: str, correlation_id: str, price_sample: int) -> ThresholdChange:
        """
        Apply a price sample delivered for ``correlation_id``.

        Postconditions:
            - threshold == compute_threshold(parameters, price_sample).
            - the oracle request row is fulfilled and frozen.
        """
        self._breaker.require_running("fulfill")

        if caller == self._settings.oracle_identity:
            source = SOURCE_ORACLE
        elif self._settings.allow_admin_fulfillment and self._roles.has(Capability.ADMIN, caller):
            source = SOURCE_ADMIN_FULFILLMENT
        else:
            raise UnauthorizedFulfillmentError(caller)

        request = self._find_request(correlation_id)
        if request is None:
            if source == SOURCE_ORACLE:
                raise UnknownCorrelationIdError(correlation_id)
            request = OracleRequestModel(
                correlation_id=correlation_id,
                job_id=self._settings.job_id,
                requested_by=caller,
                requested_at=self._clock.now(),
                status=OracleRequestStatus.PENDING.value,
                manual=True,
            )
            self._session.add(request)
        elif request.status == OracleRequestStatus.FULFILLED.value:
            raise OracleRequestAlreadyFulfilledError(correlation_id)

        new_threshold = compute_threshold(self._parameters, price_sample, correlation_id)

        state = load_custody_state(self._session)
        previous = state.threshold
        state.threshold = new_threshold

        request.status = OracleRequestStatus.FULFILLED.value
        request.price_sample = price_sample
        request.resulting_threshold = new_threshold
        request.fulfilled_by = caller
        request.fulfilled_at = self._clock.now()
        self._session.flush()

        self._auditor.record_threshold_changed(
            caller,
            previous=previous,
            current=new_threshold,
            source=source,
            correlation_id=correlation_id,
            price_sample=price_sample,
        )

        logger.info(
            "threshold_updated",
            extra={
                "previous": previous,
                "current": new_threshold,
                "source": source,
                "correlation_id": correlation_id,
                "price_sample": price_sample,
            },
        )
        return ThresholdChange(
            previous=previous,
            current=new_threshold,
            source=source,
            correlation_id=correlation_id,
        )

    def set_threshold(self, caller: str, new_value: int) -> ThresholdChange:
        """Direct Admin override; ``new_value`` must be a positive int."""
        self._breaker.require_running("set_threshold")
        self._roles.require(Capability.ADMIN, caller)

        if isinstance(new_value, bool) or not isinstance(new_value, int) or new_value <= 0:
            raise InvalidThresholdError(new_value)

        state = load_custody_state(self._session)
        previous = state.threshold
        state.threshold = new_value
        self._session.flush()

        self._auditor.record_threshold_changed(
            caller, previous=previous, current=new_value, source=SOURCE_MANUAL,
        )

        logger.info(
            "threshold_updated",
            extra={"previous": previous, "current": new_value, "source": SOURCE_MANUAL},
        )
        return ThresholdChange(previous=previous, current=new_value, source=SOURCE_MANUAL)
