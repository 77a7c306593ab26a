"""
Typed Exception Hierarchy for the Custody Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Operators and integration tooling must branch on the CAUSE of a rejected
operation without re-deriving custody state.  Every failure therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (stable, machine-readable reason)
  3. Structured DATA attributes (amount, threshold, identity, request id...)

Messages start with the deployed ledger's revert reason ("Amount below
dynamic threshold", "Unauthorized sender", ...), followed by the data that
triggered the rejection.

Example - RIGHT way:
    try:
        orchestrator.on_inbound_value(sender, amount)
    except BelowThresholdError as e:
        notify(f"needs {e.threshold}, got {e.amount}")
    except AuthorizationError as e:
        alert(e.code)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CustodyKernelError (base)
    |
    +-- AuthorizationError
    |   +-- MissingCapabilityError
    |   +-- UnauthorizedSenderError
    |   +-- DirectDepositRejectedError
    |   +-- ProxiedOriginError
    |   +-- UnauthorizedFulfillmentError
    |   +-- DepositorRequestRejectedError
    |
    +-- StateError
    |   +-- SystemPausedError
    |   +-- SystemNotPausedError
    |   +-- ReentrantCallError
    |   +-- CustodyNotInitializedError
    |   +-- AlreadyInitializedError
    |   +-- TransferRequestNotFoundError
    |   +-- AlreadyExecutedError
    |   +-- AlreadyApprovedError
    |   +-- OracleRequestAlreadyFulfilledError
    |   +-- NothingToWithdrawError
    |   +-- EmptyDepositorBalanceError
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- InvalidIdentityError
    |   +-- ReservedIdentityError
    |   +-- BelowThresholdError
    |   +-- InvalidThresholdError
    |   +-- InvalidPriceSampleError
    |   +-- UnknownCorrelationIdError
    |
    +-- CollaboratorFailure
    |   +-- ValueTransferFailedError
    |   +-- AssetTransferFailedError
    |   +-- InsufficientAllowanceError
    |   +-- InsufficientCustodyBalanceError
    |   +-- OracleRequestFailedError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category       | Code                           | When Raised
---------------|--------------------------------|------------------------------------
Authorization  | MISSING_CAPABILITY             | Caller lacks Admin/Executor/Pauser
               | UNAUTHORIZED_SENDER            | Inbound value from a stranger
               | DIRECT_DEPOSIT_REJECTED        | Inbound value from the controller
               | PROXIED_ORIGIN                 | Sender is a contract / relayed
               | UNAUTHORIZED_FULFILLMENT       | fulfill() not from the oracle
               | DEPOSITOR_REQUEST_REJECTED     | Depositor tried to originate
---------------|--------------------------------|------------------------------------
State          | SYSTEM_PAUSED                  | Mutating call while paused
               | SYSTEM_NOT_PAUSED              | unpause() while running
               | REENTRANT_CALL                 | Nested guarded call
               | CUSTODY_NOT_INITIALIZED        | Operation before bootstrap
               | ALREADY_INITIALIZED            | Second bootstrap
               | TRANSFER_REQUEST_NOT_FOUND     | Unknown id (or id <= 0)
               | ALREADY_EXECUTED               | Approve on an executed request
               | ALREADY_APPROVED               | Same slot approves twice
               | ORACLE_REQUEST_ALREADY_FULFILLED | Replayed fulfillment
               | NOTHING_TO_WITHDRAW            | Sweep with empty balances
               | EMPTY_DEPOSITOR_BALANCE        | Emergency sweep of empty wallet
---------------|--------------------------------|------------------------------------
Validation     | INVALID_AMOUNT                 | amount <= 0
               | INVALID_IDENTITY               | Empty identity
               | RESERVED_IDENTITY              | Executor candidate already a principal
               | BELOW_THRESHOLD                | Inbound amount < threshold
               | INVALID_THRESHOLD              | Threshold would be <= 0
               | INVALID_PRICE_SAMPLE           | price <= 0
               | UNKNOWN_CORRELATION_ID         | Oracle fulfils an unknown request
---------------|--------------------------------|------------------------------------
Collaborator   | VALUE_TRANSFER_FAILED          | Native transfer failed
               | ASSET_TRANSFER_FAILED          | transfer_from failed
               | INSUFFICIENT_ALLOWANCE         | Allowance below custody balance
               | INSUFFICIENT_CUSTODY_BALANCE   | Custody account cannot cover amount
               | ORACLE_REQUEST_FAILED          | Oracle did not accept request

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Every error aborts the whole operation.  The orchestrator rolls back the
   session transaction and re-raises; nothing inside the kernel retries.

2. ``code`` is a class attribute so tooling can reference
   ``BelowThresholdError.code`` without an instance.

3. Categories mirror the taxonomy operators act on:
   - AuthorizationError -> wrong identity, escalate to the controller
   - StateError         -> wrong moment (paused, executed, approved)
   - ValidationError    -> wrong input
   - CollaboratorFailure -> ledger / asset / oracle problem, investigate
===============================================================================
"""


class CustodyKernelError(Exception):
    """
    Base exception for all custody kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "CUSTODY_KERNEL_ERROR"


# Authorization exceptions


class AuthorizationError(CustodyKernelError):
    """Caller lacks the required capability or identity match."""

    code: str = "AUTHORIZATION_ERROR"


class MissingCapabilityError(AuthorizationError):
    """Caller does not hold any of the required capabilities."""

    code: str = "MISSING_CAPABILITY"

    def __init__(self, identity: str, capabilities: tuple[str, ...]):
        self.identity = identity
        self.capabilities = capabilities
        super().__init__(
            f"AccessControl: account {identity} is missing role "
            f"{' or '.join(capabilities)}"
        )


class UnauthorizedSenderError(AuthorizationError):
    """Inbound value from an identity that is not the restricted depositor."""

    code: str = "UNAUTHORIZED_SENDER"

    def __init__(self, sender: str):
        self.sender = sender
        super().__init__(f"Unauthorized sender: {sender}")


class DirectDepositRejectedError(AuthorizationError):
    """The primary controller tried to push value into the custody account."""

    code: str = "DIRECT_DEPOSIT_REJECTED"

    def __init__(self, sender: str):
        self.sender = sender
        super().__init__(f"Direct deposits not allowed: {sender}")


class ProxiedOriginError(AuthorizationError):
    """Inbound value relayed through a contract or a different origin."""

    code: str = "PROXIED_ORIGIN"

    def __init__(self, sender: str, origin: str | None):
        self.sender = sender
        self.origin = origin
        super().__init__(
            f"Sender must be an externally owned account: "
            f"sender={sender} origin={origin}"
        )


class UnauthorizedFulfillmentError(AuthorizationError):
    """A price sample was delivered by someone other than the oracle."""

    code: str = "UNAUTHORIZED_FULFILLMENT"

    def __init__(self, caller: str):
        self.caller = caller
        super().__init__(f"Caller is not the price oracle: {caller}")


class DepositorRequestRejectedError(AuthorizationError):
    """
    The restricted depositor tried to originate a transfer request.

    The intent is audited before this is raised; an Admin or Executor has
    to re-raise the request.
    """

    code: str = "DEPOSITOR_REQUEST_REJECTED"

    def __init__(self, depositor: str, amount: int, destination: str):
        self.depositor = depositor
        self.amount = amount
        self.destination = destination
        super().__init__(
            f"Restricted depositor cannot originate transfers: "
            f"{amount} to {destination}"
        )


# State exceptions


class StateError(CustodyKernelError):
    """Operation is invalid given the current custody state."""

    code: str = "STATE_ERROR"


class SystemPausedError(StateError):
    """A mutating operation was attempted while the circuit breaker is open."""

    code: str = "SYSTEM_PAUSED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Pausable: paused ({operation})")


class SystemNotPausedError(StateError):
    """unpause() while already running."""

    code: str = "SYSTEM_NOT_PAUSED"

    def __init__(self):
        super().__init__("Pausable: not paused")


class ReentrantCallError(StateError):
    """A guarded operation was entered while another one is in flight."""

    code: str = "REENTRANT_CALL"

    def __init__(self, operation: str, active_operation: str | None):
        self.operation = operation
        self.active_operation = active_operation
        super().__init__(
            f"ReentrancyGuard: reentrant call to {operation} "
            f"during {active_operation}"
        )


class CustodyNotInitializedError(StateError):
    """No custody state row exists yet."""

    code: str = "CUSTODY_NOT_INITIALIZED"

    def __init__(self):
        super().__init__("Custody state not initialized; call bootstrap() first")


class AlreadyInitializedError(StateError):
    """bootstrap() called on an initialized store."""

    code: str = "ALREADY_INITIALIZED"

    def __init__(self, primary_controller: str):
        self.primary_controller = primary_controller
        super().__init__(
            f"Custody state already initialized for {primary_controller}"
        )


class TransferRequestNotFoundError(StateError):
    """No transfer request with this id (ids start at 1)."""

    code: str = "TRANSFER_REQUEST_NOT_FOUND"

    def __init__(self, request_id: int):
        self.request_id = request_id
        super().__init__(f"Transfer request does not exist: {request_id}")


class AlreadyExecutedError(StateError):
    """The transfer request has already been executed."""

    code: str = "ALREADY_EXECUTED"

    def __init__(self, request_id: int):
        self.request_id = request_id
        super().__init__(f"Transfer already executed: {request_id}")


class AlreadyApprovedError(StateError):
    """The caller's approval slot is already set on this request."""

    code: str = "ALREADY_APPROVED"

    def __init__(self, request_id: int, slot: str):
        self.request_id = request_id
        self.slot = slot
        super().__init__(f"Already approved by {slot}: {request_id}")


class OracleRequestAlreadyFulfilledError(StateError):
    """A correlation id was fulfilled twice."""

    code: str = "ORACLE_REQUEST_ALREADY_FULFILLED"

    def __init__(self, correlation_id: str):
        self.correlation_id = correlation_id
        super().__init__(f"Oracle request already fulfilled: {correlation_id}")


class NothingToWithdrawError(StateError):
    """A sweep found no balance to move."""

    code: str = "NOTHING_TO_WITHDRAW"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"No balance to withdraw ({operation})")


class EmptyDepositorBalanceError(StateError):
    """Emergency sweep requested while the depositor holds nothing."""

    code: str = "EMPTY_DEPOSITOR_BALANCE"

    def __init__(self, depositor: str):
        self.depositor = depositor
        super().__init__(f"No balance to sweep: {depositor}")


# Validation exceptions


class ValidationError(CustodyKernelError):
    """Input rejected: zero amount, bad identity, below threshold."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """Amounts must be positive integers in the smallest unit."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: object):
        self.amount = amount
        super().__init__(f"Amount must be positive: {amount!r}")


class InvalidIdentityError(ValidationError):
    """Identity is empty or not a string."""

    code: str = "INVALID_IDENTITY"

    def __init__(self, field_name: str, value: object):
        self.field_name = field_name
        self.value = value
        super().__init__(f"Invalid address for {field_name}: {value!r}")


class ReservedIdentityError(ValidationError):
    """Executor candidate is already a principal or capability holder."""

    code: str = "RESERVED_IDENTITY"

    def __init__(self, identity: str, reason: str):
        self.identity = identity
        self.reason = reason
        super().__init__(f"Invalid executor {identity}: {reason}")


class BelowThresholdError(ValidationError):
    """Inbound value from the depositor is smaller than the threshold."""

    code: str = "BELOW_THRESHOLD"

    def __init__(self, amount: int, threshold: int):
        self.amount = amount
        self.threshold = threshold
        super().__init__(
            f"Amount below dynamic threshold: {amount} < {threshold}"
        )


class InvalidThresholdError(ValidationError):
    """The threshold must stay strictly positive."""

    code: str = "INVALID_THRESHOLD"

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Threshold must be positive: {value!r}")


class InvalidPriceSampleError(ValidationError):
    """Price samples must be strictly positive."""

    code: str = "INVALID_PRICE_SAMPLE"

    def __init__(self, correlation_id: str, price_sample: object):
        self.correlation_id = correlation_id
        self.price_sample = price_sample
        super().__init__(
            f"Invalid price: {price_sample!r} for request {correlation_id}"
        )


class UnknownCorrelationIdError(ValidationError):
    """The oracle fulfilled a request this system never made."""

    code: str = "UNKNOWN_CORRELATION_ID"

    def __init__(self, correlation_id: str):
        self.correlation_id = correlation_id
        super().__init__(f"Unknown oracle request: {correlation_id}")


# Collaborator exceptions


class CollaboratorFailure(CustodyKernelError):
    """An external transfer / allowance / oracle call did not succeed."""

    code: str = "COLLABORATOR_FAILURE"


class ValueTransferFailedError(CollaboratorFailure):
    """The value ledger refused or failed a native transfer."""

    code: str = "VALUE_TRANSFER_FAILED"

    def __init__(self, destination: str, amount: int, detail: str = ""):
        self.destination = destination
        self.amount = amount
        self.detail = detail
        suffix = f" ({detail})" if detail else ""
        super().__init__(
            f"Value transfer failed: {amount} to {destination}{suffix}"
        )


class AssetTransferFailedError(CollaboratorFailure):
    """The asset ledger refused or failed transfer_from."""

    code: str = "ASSET_TRANSFER_FAILED"

    def __init__(self, owner: str, destination: str, amount: int, detail: str = ""):
        self.owner = owner
        self.destination = destination
        self.amount = amount
        self.detail = detail
        suffix = f" ({detail})" if detail else ""
        super().__init__(
            f"Asset transfer failed: {amount} from {owner} "
            f"to {destination}{suffix}"
        )


class InsufficientAllowanceError(CollaboratorFailure):
    """The custody account's asset allowance cannot cover the sweep."""

    code: str = "INSUFFICIENT_ALLOWANCE"

    def __init__(self, owner: str, allowance: int, required: int):
        self.owner = owner
        self.allowance = allowance
        self.required = required
        super().__init__(
            f"Insufficient asset allowance from {owner}: "
            f"{allowance} < {required}"
        )


class InsufficientCustodyBalanceError(CollaboratorFailure):
    """The custody account does not hold enough native value."""

    code: str = "INSUFFICIENT_CUSTODY_BALANCE"

    def __init__(self, balance: int, required: int):
        self.balance = balance
        self.required = required
        super().__init__(
            f"Insufficient custody balance: {balance} < {required}"
        )


class OracleRequestFailedError(CollaboratorFailure):
    """The price oracle did not accept the request."""

    code: str = "ORACLE_REQUEST_FAILED"

    def __init__(self, job_id: str, detail: str = ""):
        self.job_id = job_id
        self.detail = detail
        super().__init__(f"Oracle request failed for job {job_id}: {detail}")


# Immutability exceptions


class ImmutabilityError(CustodyKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Executed transfer requests, audit events and the custody principals
    are immutable after creation.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Audit exceptions


class AuditError(CustodyKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )
