"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of a ledger must react to failures by category, not by parsing
messages.  Every exception here:
  1. Has a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (survives logging/serialization)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerKernelError (base)
    |
    +-- ValidationError                 rejected before any write
    |   +-- EmptyEntryError
    |   +-- UnbalancedEntryError
    |   +-- InvalidLineError
    |   +-- UnknownAccountError
    |   +-- AccountNotFoundError
    |   +-- InvalidParentError
    |   +-- InvalidQuantityError
    |   +-- InvalidCostError
    |   +-- InvalidContextError
    |   +-- EntryNotFoundError
    |   +-- OperationNotFoundError
    |   +-- InvalidTransferError
    |
    +-- ConflictError                   rejected before any write
    |   +-- DuplicateCodeError
    |   +-- AlreadyVoidedError
    |   +-- ReversalEntryVoidError
    |   +-- AccountInUseError
    |   +-- OperationAlreadyReversedError
    |
    +-- ResourceError                   rejected before any write
    |   +-- InsufficientStockError
    |
    +-- ConcurrencyError                whole operation aborted, caller retries
    |   +-- OptimisticLockError
    |
    +-- ArithmeticOverflowError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | EMPTY_ENTRY                 | Entry has no lines
                | UNBALANCED_ENTRY            | Debits != Credits
                | INVALID_LINE                | Line is not exactly one positive side
                | UNKNOWN_ACCOUNT             | Posting to missing/inactive account
                | ACCOUNT_NOT_FOUND           | Account code doesn't exist
                | INVALID_PARENT              | Parent missing or would form a cycle
                | INVALID_QUANTITY            | Quantity <= 0 or not an integer
                | INVALID_COST                | Negative unit cost
                | INVALID_CONTEXT             | Missing tenant/location
                | ENTRY_NOT_FOUND             | Journal entry id doesn't exist
                | OPERATION_NOT_FOUND         | No committed operation for a key
                | INVALID_TRANSFER            | Transfer to the same location
----------------|-----------------------------|-----------------------------------------
Conflict        | DUPLICATE_CODE              | Account code already used in tenant
                | ALREADY_VOIDED              | Entry already voided
                | REVERSAL_ENTRY_VOID         | Voiding a reversing entry
                | ACCOUNT_IN_USE              | Deactivating account with open balance
                | OPERATION_ALREADY_REVERSED  | Sale already reversed under another key
----------------|-----------------------------|-----------------------------------------
Resource        | INSUFFICIENT_STOCK          | Not enough remaining layer quantity
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Lost update on layer/entry/counter
----------------|-----------------------------|-----------------------------------------
Arithmetic      | ARITHMETIC_OVERFLOW         | Money left the signed 64-bit range
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying a posted record

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        orchestrator.record_sale(ctx, sale_id, items, accounts)
    except InsufficientStockError as e:
        notify(f"only {e.available} of {e.product_id} left")
    except ConcurrencyError:
        # Safe: replaying the same sale_id after a commit is a no-op
        schedule_retry(sale_id)
"""


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses carry a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# =============================================================================
# Validation
# =============================================================================


class ValidationError(LedgerKernelError):
    """Base exception for requests rejected by validation."""

    code: str = "VALIDATION_ERROR"


class EmptyEntryError(ValidationError):
    """Journal entry has no lines."""

    code: str = "EMPTY_ENTRY"

    def __init__(self, description: str | None = None):
        self.description = description
        super().__init__("Journal entry must have at least one line")


class UnbalancedEntryError(ValidationError):
    """Journal entry debits do not equal credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: int, credits: int):
        self.debits = debits
        self.credits = credits
        super().__init__(
            f"Unbalanced entry: debits={debits}, credits={credits}"
        )


class InvalidLineError(ValidationError):
    """Journal line does not carry exactly one positive side."""

    code: str = "INVALID_LINE"

    def __init__(self, account_code: str, debit: int, credit: int):
        self.account_code = account_code
        self.debit = debit
        self.credit = credit
        super().__init__(
            f"Line on {account_code} must have exactly one positive side: "
            f"debit={debit}, credit={credit}"
        )


class UnknownAccountError(ValidationError):
    """Posting references an account that is missing or inactive."""

    code: str = "UNKNOWN_ACCOUNT"

    def __init__(self, account_code: str, reason: str):
        self.account_code = account_code
        self.reason = reason
        super().__init__(f"Cannot post to account {account_code}: {reason}")


class AccountNotFoundError(ValidationError):
    """Account code does not exist in the tenant's chart."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account not found: {account_code}")


class InvalidParentError(ValidationError):
    """Parent account is unknown or would introduce a cycle."""

    code: str = "INVALID_PARENT"

    def __init__(self, account_code: str, parent_code: str, reason: str):
        self.account_code = account_code
        self.parent_code = parent_code
        self.reason = reason
        super().__init__(
            f"Invalid parent {parent_code} for account {account_code}: {reason}"
        )


class InvalidQuantityError(ValidationError):
    """Quantity must be a positive integer."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: object):
        self.quantity = quantity
        super().__init__(f"Quantity must be a positive integer, got {quantity!r}")


class InvalidCostError(ValidationError):
    """Unit cost must not be negative."""

    code: str = "INVALID_COST"

    def __init__(self, unit_cost: int):
        self.unit_cost = unit_cost
        super().__init__(f"Unit cost cannot be negative, got {unit_cost}")


class InvalidContextError(ValidationError):
    """Operation context is missing a required scoping key."""

    code: str = "INVALID_CONTEXT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid operation context ({field}): {reason}")


class EntryNotFoundError(ValidationError):
    """Journal entry does not exist in the tenant."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


class OperationNotFoundError(ValidationError):
    """No committed business operation exists for the natural key."""

    code: str = "OPERATION_NOT_FOUND"

    def __init__(self, kind: str, natural_key: str):
        self.kind = kind
        self.natural_key = natural_key
        super().__init__(f"No committed {kind} operation for key {natural_key}")


class InvalidTransferError(ValidationError):
    """A stock transfer must move goods between two different locations."""

    code: str = "INVALID_TRANSFER"

    def __init__(self, transfer_id: str, from_location: str, to_location: str):
        self.transfer_id = transfer_id
        self.from_location = from_location
        self.to_location = to_location
        super().__init__(
            f"Transfer {transfer_id} must change location, got {from_location} -> {to_location}"
        )


# =============================================================================
# Conflict
# =============================================================================


class ConflictError(LedgerKernelError):
    """Base exception for requests conflicting with existing state."""

    code: str = "CONFLICT_ERROR"


class DuplicateCodeError(ConflictError):
    """Account code already exists in the tenant."""

    code: str = "DUPLICATE_CODE"

    def __init__(self, tenant_id: str, account_code: str):
        self.tenant_id = tenant_id
        self.account_code = account_code
        super().__init__(
            f"Account code {account_code} already exists in tenant {tenant_id}"
        )


class AlreadyVoidedError(ConflictError):
    """Journal entry has already been voided."""

    code: str = "ALREADY_VOIDED"

    def __init__(self, entry_id: str, entry_number: int):
        self.entry_id = entry_id
        self.entry_number = entry_number
        super().__init__(f"Journal entry #{entry_number} is already voided")


class ReversalEntryVoidError(ConflictError):
    """Reversing entries are terminal and cannot themselves be voided."""

    code: str = "REVERSAL_ENTRY_VOID"

    def __init__(self, entry_id: str, entry_number: int):
        self.entry_id = entry_id
        self.entry_number = entry_number
        super().__init__(
            f"Journal entry #{entry_number} is a reversing entry and cannot be voided"
        )


class AccountInUseError(ConflictError):
    """Account cannot be deactivated while it carries an open balance."""

    code: str = "ACCOUNT_IN_USE"

    def __init__(self, account_code: str, balance: int):
        self.account_code = account_code
        self.balance = balance
        super().__init__(
            f"Account {account_code} has an open balance of {balance} and "
            "cannot be deactivated"
        )


class OperationAlreadyReversedError(ConflictError):
    """The business operation was already reversed."""

    code: str = "OPERATION_ALREADY_REVERSED"

    def __init__(self, kind: str, natural_key: str):
        self.kind = kind
        self.natural_key = natural_key
        super().__init__(f"{kind} {natural_key} has already been reversed")


# =============================================================================
# Resource
# =============================================================================


class ResourceError(LedgerKernelError):
    """Base exception for exhausted resources."""

    code: str = "RESOURCE_ERROR"


class InsufficientStockError(ResourceError):
    """Remaining layer quantity cannot satisfy the request."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        location_id: str,
        requested: int,
        available: int,
    ):
        self.product_id = product_id
        self.location_id = location_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_id} at {location_id}: "
            f"requested {requested}, available {available}"
        )


# =============================================================================
# Concurrency
# =============================================================================


class ConcurrencyError(LedgerKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Concurrent modification detected; the whole operation was rolled back."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, detail: str):
        self.entity_type = entity_type
        self.detail = detail
        super().__init__(
            f"Concurrent modification of {entity_type}: {detail}"
        )


# =============================================================================
# Arithmetic
# =============================================================================


class ArithmeticOverflowError(LedgerKernelError):
    """Money arithmetic left the representable range."""

    code: str = "ARITHMETIC_OVERFLOW"

    def __init__(self, operation: str, result: int | str):
        self.operation = operation
        self.result = result
        super().__init__(
            f"Money overflow in {operation}: {result} is outside the 64-bit range"
        )


# =============================================================================
# Immutability
# =============================================================================


class ImmutabilityError(LedgerKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
