"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A rejected stock movement has to tell the caller exactly what went wrong:
which material ran short, which product had no recipe, which job was moved
by someone else first.  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - RIGHT way:
    try:
        ledger.resolve_and_deduct(job_id)
    except InsufficientStockError as e:
        notify_buyer(e.material_name, short_by=e.shortfall)
        api_response(code=e.code, material=str(e.material_id))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from StockKernelError:

    StockKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- EmptyLineItemsError
    |   +-- DuplicateLineItemError
    |   +-- InvalidTransactionKindError
    |   +-- InvalidMovementTypeError
    |   +-- InvalidProductLineError
    |   +-- InvalidStageError
    |   +-- InvalidThresholdError
    |
    +-- NotFoundError
    |   +-- MaterialNotFoundError
    |   +-- JobNotFoundError
    |   +-- TransactionNotFoundError
    |
    +-- LedgerError
    |   +-- InsufficientStockError
    |
    +-- BomError
    |   +-- MissingBomError
    |
    +-- StageError
    |   +-- StageConflictError
    |
    +-- ConcurrencyError
    |   +-- LedgerConflictError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError
        +-- BalanceOwnershipError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_QUANTITY            | Non-finite, zero or negative where barred
                | EMPTY_LINE_ITEMS            | Transaction batch with no lines
                | DUPLICATE_LINE_ITEM         | Same material twice in one batch
                | INVALID_TRANSACTION_KIND    | Unknown transaction kind
                | INVALID_MOVEMENT_TYPE       | Unknown movement type override
                | INVALID_PRODUCT_LINE        | Malformed job product list entry
                | INVALID_STAGE               | Blank or unusable stage label
                | INVALID_THRESHOLD           | restock_threshold < minimum_level
----------------|-----------------------------|-----------------------------------------
Not found       | MATERIAL_NOT_FOUND          | Material id doesn't exist
                | JOB_NOT_FOUND               | Job id doesn't exist
                | TRANSACTION_NOT_FOUND       | Transaction id doesn't exist
----------------|-----------------------------|-----------------------------------------
Ledger          | INSUFFICIENT_STOCK          | A line would drive a balance negative
----------------|-----------------------------|-----------------------------------------
BOM             | MISSING_BOM                 | No recipe (strict mode only)
----------------|-----------------------------|-----------------------------------------
Stage           | STAGE_CONFLICT              | Concurrent or out-of-order transition
----------------|-----------------------------|-----------------------------------------
Concurrency     | LEDGER_CONFLICT             | Transient DB conflicts, retries exhausted
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an append-only record
                | BALANCE_OWNERSHIP_VIOLATION | qty_on_hand written outside the ledger

===============================================================================
HANDLING PATTERNS
===============================================================================

1. IDEMPOTENCY IS SUCCESS, NOT AN ERROR:

    result = ledger.resolve_and_deduct(job_id)
    if result.status is DeductionStatus.ALREADY_DEDUCTED:
        # same transaction id as the first call
        ...

2. MISSING BOM IS A WARNING:

    result.missing_bom  # tuple of MissingBom, the rest was still deducted

3. RETRY ONLY CONCURRENCY ERRORS:

    except StageConflictError:
        reload_job_and_retry()
    except InsufficientStockError:
        # deterministic - retrying with the same inputs fails again
        raise

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Inherit from Exception, not ValueError: domain errors must be catchable
   as a group, separate from programming errors.

2. code is a CLASS attribute: InsufficientStockError.code is usable without
   an instance (API docs, static tables).

3. All context lives in attributes so that the structured log formatter can
   flatten it into exc_* fields.

===============================================================================
"""

from decimal import Decimal


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"


# Validation exceptions


class ValidationError(StockKernelError):
    """Base exception for malformed input rejected before any read."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """Quantity is non-finite, zero, or otherwise unusable."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: object, reason: str):
        self.field = field
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid quantity for {field} ({value!r}): {reason}")


class EmptyLineItemsError(ValidationError):
    """Transaction submitted with no line items."""

    code: str = "EMPTY_LINE_ITEMS"

    def __init__(self, kind: str, reference: str):
        self.kind = kind
        self.reference = reference
        super().__init__(
            f"Transaction {kind} '{reference}' has no line items"
        )


class DuplicateLineItemError(ValidationError):
    """The same material appears more than once in a batch."""

    code: str = "DUPLICATE_LINE_ITEM"

    def __init__(self, material_id: str):
        self.material_id = material_id
        super().__init__(
            f"Material {material_id} appears more than once in the batch; "
            "coalesce deltas before applying"
        )


class InvalidTransactionKindError(ValidationError):
    """Unknown transaction kind."""

    code: str = "INVALID_TRANSACTION_KIND"

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Invalid transaction kind: {kind!r}")


class InvalidMovementTypeError(ValidationError):
    """Unknown movement type override on a line item."""

    code: str = "INVALID_MOVEMENT_TYPE"

    def __init__(self, movement_type: str):
        self.movement_type = movement_type
        super().__init__(f"Invalid movement type: {movement_type!r}")


class InvalidProductLineError(ValidationError):
    """A job product-list entry failed boundary validation."""

    code: str = "INVALID_PRODUCT_LINE"

    def __init__(self, index: int, reason: str):
        self.index = index
        self.reason = reason
        super().__init__(f"Invalid product line at index {index}: {reason}")


class InvalidStageError(ValidationError):
    """Stage label is blank or otherwise unusable."""

    code: str = "INVALID_STAGE"

    def __init__(self, stage: object):
        self.stage = str(stage)
        super().__init__(f"Invalid production stage: {stage!r}")


class InvalidThresholdError(ValidationError):
    """Material thresholds are inconsistent."""

    code: str = "INVALID_THRESHOLD"

    def __init__(self, minimum_level: Decimal, restock_threshold: Decimal):
        self.minimum_level = minimum_level
        self.restock_threshold = restock_threshold
        super().__init__(
            f"restock_threshold ({restock_threshold}) must be >= "
            f"minimum_level ({minimum_level})"
        )


# Not-found exceptions


class NotFoundError(StockKernelError):
    """Base exception for unknown references."""

    code: str = "NOT_FOUND"


class MaterialNotFoundError(NotFoundError):
    """Material with given ID was not found."""

    code: str = "MATERIAL_NOT_FOUND"

    def __init__(self, material_id: str):
        self.material_id = material_id
        super().__init__(f"Material not found: {material_id}")


class JobNotFoundError(NotFoundError):
    """Job with given ID was not found."""

    code: str = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class TransactionNotFoundError(NotFoundError):
    """Stock transaction with given ID was not found."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Stock transaction not found: {transaction_id}")


# Ledger exceptions


class LedgerError(StockKernelError):
    """Base exception for ledger apply failures."""

    code: str = "LEDGER_ERROR"


class InsufficientStockError(LedgerError):
    """
    Applying the batch would drive a material balance below zero.

    The whole batch is rejected: no balance, transaction, line or movement
    is persisted.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        material_id: str,
        material_name: str,
        on_hand: Decimal,
        delta: Decimal,
    ):
        self.material_id = material_id
        self.material_name = material_name
        self.on_hand = on_hand
        self.delta = delta
        self.shortfall = -(on_hand + delta)
        super().__init__(
            f"Insufficient stock for {material_name}: on hand {on_hand}, "
            f"requested change {delta}"
        )


# BOM exceptions


class BomError(StockKernelError):
    """Base exception for bill-of-materials errors."""

    code: str = "BOM_ERROR"


class MissingBomError(BomError):
    """
    No BOM recipe exists for a product type / size.

    Only raised when complete BOM coverage is required; by default missing
    recipes are reported as warnings on the deduction result.
    """

    code: str = "MISSING_BOM"

    def __init__(self, missing: list[tuple[str, str | None]]):
        self.missing = missing
        labels = ", ".join(
            f"{product_type} ({size or 'generic'})"
            for product_type, size in missing
        )
        super().__init__(f"No BOM configured for: {labels}")


# Stage exceptions


class StageError(StockKernelError):
    """Base exception for stage-history errors."""

    code: str = "STAGE_ERROR"


class StageConflictError(StageError):
    """A concurrent or out-of-order transition was detected for a job."""

    code: str = "STAGE_CONFLICT"

    def __init__(self, job_id: str, reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Stage conflict on job {job_id}: {reason}")


# Concurrency exceptions


class ConcurrencyError(StockKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class LedgerConflictError(ConcurrencyError):
    """Transient database conflicts persisted past the retry budget."""

    code: str = "LEDGER_CONFLICT"

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} failed after {attempts} attempts due to "
            "concurrent database conflicts"
        )


# Immutability exceptions


class ImmutabilityError(StockKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an append-only record.

    StockTransaction, StockTransactionLine and StockMovement are immutable
    after insert; StageHistoryEntry may only have exited_at set once.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class BalanceOwnershipError(ImmutabilityError):
    """qty_on_hand was written outside the ledger transaction engine."""

    code: str = "BALANCE_OWNERSHIP_VIOLATION"

    def __init__(self, material_id: str):
        self.material_id = material_id
        super().__init__(
            f"qty_on_hand of material {material_id} may only be changed "
            "by a stock ledger transaction"
        )
