"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Billing errors end up in front of a consultant deciding whether a customer
gets invoiced. Generic exceptions like ValueError or RuntimeError force the
calling layer to parse message strings to tell "agreement misconfigured"
apart from "batch already exported". Instead:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        batch = add_entry(batch, entry)
    except Exception as e:
        if "exported" in str(e):  # FRAGILE - message might change
            show_locked_banner()

Example - RIGHT way (what this module enables):
    try:
        batch = add_entry(batch, entry)
    except BatchImmutableError as e:
        render_error(code=e.code, batch=e.batch_id, status=e.status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BillingKernelError:

    BillingKernelError (base)
    |
    +-- BillingValidationError
    |   +-- AgreementValidationError
    |   +-- InvalidAgreementTypeError
    |   +-- InvalidHoursError
    |   +-- AgreementNotFoundError
    |   +-- EmptyBatchError
    |   +-- EntryAlreadyExportedError
    |   +-- DuplicateBatchEntryError
    |   +-- BatchEntryNotFoundError
    |   +-- TimeEntryNotFoundError
    |   +-- EntryCustomerMismatchError
    |
    +-- TimebankViewIncompleteError
    |
    +-- BatchStateError
    |   +-- BatchImmutableError
    |   +-- BatchUnderReviewError
    |   +-- InvalidBatchTransitionError
    |   +-- BatchExportFailedError
    |
    +-- BatchNotFoundError
    |
    +-- ConcurrencyError
        +-- ConcurrentTransitionError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | AGREEMENT_INVALID           | Agreement misses a field its type requires
                | INVALID_AGREEMENT_TYPE      | Timebank calculation on non-timebank agreement
                | INVALID_HOURS               | Negative or non-numeric hours
                | AGREEMENT_NOT_FOUND         | Entry references an unknown agreement
                | EMPTY_BATCH                 | draft -> review with zero entries
                | ENTRY_ALREADY_EXPORTED      | Exported entry changed or re-batched
                | DUPLICATE_BATCH_ENTRY       | Entry added to a batch twice
                | BATCH_ENTRY_NOT_FOUND       | Removing/editing a non-member entry
                | TIME_ENTRY_NOT_FOUND        | Batching an unknown time entry
                | ENTRY_CUSTOMER_MISMATCH     | Batching another customer's entry
----------------|-----------------------------|-----------------------------------------
Data gap        | TIMEBANK_VIEW_INCOMPLETE    | Aggregate row lacks required fields
                |                             | (handled locally by raw-entry fallback)
----------------|-----------------------------|-----------------------------------------
Batch state     | BATCH_IMMUTABLE             | Mutating an exported/locked batch
                | BATCH_UNDER_REVIEW          | Mutating a batch in review
                | INVALID_BATCH_TRANSITION    | Transition not in the workflow
                | BATCH_EXPORT_FAILED         | External export reported failure
----------------|-----------------------------|-----------------------------------------
Lookup          | BATCH_NOT_FOUND             | Batch ID doesn't exist
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENT_TRANSITION       | Batch changed since it was read

===============================================================================
HANDLING PATTERNS
===============================================================================

1. VALIDATION ERRORS are raised immediately and never defaulted. A wrong
   default for included hours or the overtime rate misstates money.

2. STATE ERRORS are surfaced to the caller and never retried automatically.
   Retrying a forbidden mutation is never correct.

3. CONCURRENCY ERRORS mean another caller won the race. Reload the batch
   and let the user decide; do not blindly replay the transition.

4. TimebankViewIncompleteError is a data-gap signal. The engine catches it
   itself (``resolve_timebank_status``) and recomputes from raw entries.
"""


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


# Validation exceptions


class BillingValidationError(BillingKernelError):
    """Base exception for input that would misstate money if accepted."""

    code: str = "VALIDATION_ERROR"


class AgreementValidationError(BillingValidationError):
    """Agreement is missing or misstates a field required by its type."""

    code: str = "AGREEMENT_INVALID"

    def __init__(self, agreement_id: str, field: str, reason: str):
        self.agreement_id = agreement_id
        self.field = field
        self.reason = reason
        super().__init__(
            f"Agreement {agreement_id} is invalid: {field} {reason}"
        )


class InvalidAgreementTypeError(BillingValidationError):
    """Operation requires a different agreement type."""

    code: str = "INVALID_AGREEMENT_TYPE"

    def __init__(self, agreement_id: str, expected_type: str, actual_type: str):
        self.agreement_id = agreement_id
        self.expected_type = expected_type
        self.actual_type = actual_type
        super().__init__(
            f"Agreement {agreement_id} has type '{actual_type}', "
            f"expected '{expected_type}'"
        )


class InvalidHoursError(BillingValidationError):
    """Hours value is negative or not a number."""

    code: str = "INVALID_HOURS"

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = str(value)
        super().__init__(f"Invalid {field}: {value!r} (must be a non-negative number)")


class AgreementNotFoundError(BillingValidationError):
    """A time entry references an agreement that was not supplied."""

    code: str = "AGREEMENT_NOT_FOUND"

    def __init__(self, agreement_id: str, entry_id: str | None = None):
        self.agreement_id = agreement_id
        self.entry_id = entry_id
        if entry_id:
            msg = f"Agreement {agreement_id} referenced by entry {entry_id} not found"
        else:
            msg = f"Agreement not found: {agreement_id}"
        super().__init__(msg)


class EmptyBatchError(BillingValidationError):
    """Batch has no member entries and cannot be sent to review."""

    code: str = "EMPTY_BATCH"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(
            f"Billing batch {batch_id} has no entries and cannot be reviewed"
        )


class EntryAlreadyExportedError(BillingValidationError):
    """Exported time entries are immutable and cannot be re-batched."""

    code: str = "ENTRY_ALREADY_EXPORTED"

    def __init__(self, entry_id: str, operation: str):
        self.entry_id = entry_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation} time entry {entry_id}: entry is already exported"
        )


class DuplicateBatchEntryError(BillingValidationError):
    """Time entry is already a member of the batch."""

    code: str = "DUPLICATE_BATCH_ENTRY"

    def __init__(self, batch_id: str, entry_id: str):
        self.batch_id = batch_id
        self.entry_id = entry_id
        super().__init__(f"Time entry {entry_id} is already in batch {batch_id}")


class BatchEntryNotFoundError(BillingValidationError):
    """Time entry is not a member of the batch."""

    code: str = "BATCH_ENTRY_NOT_FOUND"

    def __init__(self, batch_id: str, entry_id: str):
        self.batch_id = batch_id
        self.entry_id = entry_id
        super().__init__(f"Time entry {entry_id} is not in batch {batch_id}")


class TimeEntryNotFoundError(BillingValidationError):
    """Time entry with given ID was not found."""

    code: str = "TIME_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Time entry not found: {entry_id}")


class EntryCustomerMismatchError(BillingValidationError):
    """Time entry belongs to a different customer than the batch."""

    code: str = "ENTRY_CUSTOMER_MISMATCH"

    def __init__(self, batch_id: str, entry_id: str, entry_customer_id: str | None):
        self.batch_id = batch_id
        self.entry_id = entry_id
        self.entry_customer_id = entry_customer_id
        super().__init__(
            f"Time entry {entry_id} belongs to customer {entry_customer_id}, "
            f"not to the customer of batch {batch_id}"
        )


# Data-gap signal


class TimebankViewIncompleteError(BillingKernelError):
    """
    Aggregate timebank row lacks fields needed to build a status.

    Not surfaced to callers: resolve_timebank_status() recomputes from raw
    time entries instead.
    """

    code: str = "TIMEBANK_VIEW_INCOMPLETE"

    def __init__(self, agreement_id: str | None, missing_fields: tuple[str, ...]):
        self.agreement_id = agreement_id
        self.missing_fields = missing_fields
        super().__init__(
            f"Timebank view for agreement {agreement_id} is missing: "
            f"{', '.join(missing_fields)}"
        )


# Batch state exceptions


class BatchStateError(BillingKernelError):
    """Base exception for operations forbidden by the batch's status."""

    code: str = "BATCH_STATE_ERROR"


class BatchImmutableError(BatchStateError):
    """Batch is exported or locked; membership and totals are frozen."""

    code: str = "BATCH_IMMUTABLE"

    def __init__(self, batch_id: str, status: str, operation: str):
        self.batch_id = batch_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} billing batch {batch_id}: "
            f"batch is {status} and immutable"
        )


class BatchUnderReviewError(BatchStateError):
    """Batch is in review; return it to draft before editing."""

    code: str = "BATCH_UNDER_REVIEW"

    def __init__(self, batch_id: str, operation: str):
        self.batch_id = batch_id
        self.operation = operation
        super().__init__(
            f"Cannot {operation} billing batch {batch_id} while under review: "
            "return it to draft first"
        )


class InvalidBatchTransitionError(BatchStateError):
    """Requested status change is not part of the batch workflow."""

    code: str = "INVALID_BATCH_TRANSITION"

    def __init__(self, batch_id: str, from_status: str, to_status: str):
        self.batch_id = batch_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Billing batch {batch_id} cannot move from {from_status} to {to_status}"
        )


class BatchExportFailedError(BatchStateError):
    """External export did not succeed; batch remains in review."""

    code: str = "BATCH_EXPORT_FAILED"

    def __init__(self, batch_id: str, reason: str | None):
        self.batch_id = batch_id
        self.reason = reason
        super().__init__(
            f"Export of billing batch {batch_id} failed: {reason or 'no reason given'}"
        )


class BatchNotFoundError(BillingKernelError):
    """Billing batch with given ID was not found."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Billing batch not found: {batch_id}")


# Concurrency exceptions


class ConcurrencyError(BillingKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentTransitionError(ConcurrencyError):
    """Batch was changed by another caller since it was read."""

    code: str = "CONCURRENT_TRANSITION"

    def __init__(
        self,
        batch_id: str,
        expected_version: int,
        actual_version: int | None,
    ):
        self.batch_id = batch_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Concurrent modification of billing batch {batch_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )
