"""Services for the custody kernel (write side)."""

from custody_kernel.services.admin_operations import AdminOperations
from custody_kernel.services.approval_workflow import ApprovalWorkflow
from custody_kernel.services.auditor_service import AuditorService, AuditTrace, AuditTraceEntry
from custody_kernel.services.circuit_breaker import CircuitBreaker
from custody_kernel.services.custody_orchestrator import CustodyOrchestrator, CustodyPrincipals
from custody_kernel.services.reentrancy_guard import ReentrancyGuard
from custody_kernel.services.redirection_gate import RedirectionGate
from custody_kernel.services.role_registry import RoleRegistry
from custody_kernel.services.sequence_service import SequenceService
from custody_kernel.services.threshold_controller import OracleSettings, ThresholdController

__all__ = [
    "AdminOperations",
    "ApprovalWorkflow",
    "AuditTrace",
    "AuditTraceEntry",
    "AuditorService",
    "CircuitBreaker",
    "CustodyOrchestrator",
    "CustodyPrincipals",
    "OracleSettings",
    "ReentrancyGuard",
    "RedirectionGate",
    "RoleRegistry",
    "SequenceService",
    "ThresholdController",
]
