"""Pure domain layer: value objects, capability rules, threshold math."""

from custody_kernel.domain.capabilities import (
    APPROVER_CAPABILITIES,
    PRIMARY_CONTROLLER_CAPABILITIES,
    ApprovalSlot,
    Capability,
    slot_for,
)
from custody_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from custody_kernel.domain.collaborators import AssetLedger, PriceOracle, ValueLedger
from custody_kernel.domain.dtos import (
    BreakerState,
    CustodySnapshot,
    EmergencySweepSignal,
    ExecutorRotation,
    OracleRequestInfo,
    OracleRequestStatus,
    RedirectionReceipt,
    ThresholdChange,
    WithdrawalReceipt,
)
from custody_kernel.domain.threshold import ThresholdParameters, compute_threshold
from custody_kernel.domain.transfer import (
    NULL_REQUEST_ID,
    TRANSFER_TRANSITIONS,
    TransferRequest,
    TransferStatus,
)

__all__ = [
    "APPROVER_CAPABILITIES",
    "ApprovalSlot",
    "AssetLedger",
    "BreakerState",
    "Capability",
    "Clock",
    "CustodySnapshot",
    "DeterministicClock",
    "EmergencySweepSignal",
    "ExecutorRotation",
    "NULL_REQUEST_ID",
    "OracleRequestInfo",
    "OracleRequestStatus",
    "PRIMARY_CONTROLLER_CAPABILITIES",
    "PriceOracle",
    "RedirectionReceipt",
    "SystemClock",
    "TRANSFER_TRANSITIONS",
    "ThresholdChange",
    "ThresholdParameters",
    "TransferRequest",
    "TransferStatus",
    "ValueLedger",
    "WithdrawalReceipt",
    "compute_threshold",
    "slot_for",
]
