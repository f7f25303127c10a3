"""
Billing Batch State Machine (``billing_batch.domain.workflow``).

Responsibility
--------------
Declares the billing batch lifecycle and applies it: which transitions
exist, which guards they carry, and which membership edits are legal in
each state.

Lifecycle::

    draft --submit--> review --record_export--> exported --lock--> locked
      ^  \\__ no-op     |
      |                 |
      +----return-------+

Architecture position
---------------------
**Batch domain layer** -- pure functions over frozen ``BillingBatch``
snapshots.  ZERO I/O.  Durable, serialized transitions live in
``billing_batch.services.batch_service``.

Invariants enforced
-------------------
* No transition skips a state.  Only ``review -> draft`` reverses.
* ``draft -> review`` requires at least one entry and freezes totals.
* ``review -> exported`` records a successful external export; a failed
  export leaves the batch in review.
* ``exported`` and ``locked`` batches never change membership or totals.
* Every successful change increments ``version``; a stale
  ``expected_version`` is rejected.

Failure modes
-------------
* ``InvalidBatchTransitionError`` -- transition not declared.
* ``EmptyBatchError`` -- review requested for an empty batch.
* ``BatchExportFailedError`` -- export outcome reported failure.
* ``BatchImmutableError`` / ``BatchUnderReviewError`` -- membership edit in
  exported/locked or review.
* ``EntryAlreadyExportedError`` / ``DuplicateBatchEntryError`` /
  ``BatchEntryNotFoundError`` -- illegal membership edits.
* ``ConcurrentTransitionError`` -- ``expected_version`` mismatch.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import datetime
from uuid import UUID, uuid4

from billing_kernel.domain.agreements import Agreement, TimeEntry
from billing_kernel.domain.values import Currency
from billing_kernel.domain.workflow import Guard, Transition, Workflow
from billing_kernel.exceptions import (
    BatchEntryNotFoundError,
    BatchExportFailedError,
    BatchImmutableError,
    BatchUnderReviewError,
    ConcurrentTransitionError,
    DuplicateBatchEntryError,
    EmptyBatchError,
    EntryAlreadyExportedError,
    InvalidBatchTransitionError,
)
from billing_kernel.logging_config import get_logger
from billing_engines.amounts import BatchTotals, compute_batch_totals
from billing_batch.domain.types import BatchStatus, BillingBatch, ExportOutcome

logger = get_logger("batch.workflow")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

HAS_ENTRIES = Guard(
    name="has_entries",
    description="Batch holds at least one time entry",
)

EXPORT_SUCCEEDED = Guard(
    name="export_succeeded",
    description="External export action reported success",
)


# -----------------------------------------------------------------------------
# Workflow
# -----------------------------------------------------------------------------

BILLING_BATCH_WORKFLOW = Workflow(
    name="billing_batch",
    description="Billing batch lifecycle from draft to financial export",
    initial_state=BatchStatus.DRAFT.value,
    states=tuple(s.value for s in BatchStatus),
    terminal_states=(BatchStatus.LOCKED.value,),
    transitions=(
        Transition("draft", "draft", action="save"),
        Transition("draft", "review", action="submit_for_review", guard=HAS_ENTRIES),
        Transition("review", "draft", action="return_to_draft"),
        Transition("review", "exported", action="record_export", guard=EXPORT_SUCCEEDED),
        Transition("exported", "locked", action="lock"),
    ),
)


def can_transition(from_status: BatchStatus | str, to_status: BatchStatus | str) -> bool:
    return (
        BILLING_BATCH_WORKFLOW.find_transition(
            BatchStatus(from_status).value, BatchStatus(to_status).value
        )
        is not None
    )


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def format_batch_number(prefix: str, period_year: int, period_month: int, sequence: int) -> str:
    """``"<prefix>-YYYYMM-<seq>"`` with a four-digit zero-padded sequence."""
    return f"{prefix}-{period_year:04d}{period_month:02d}-{sequence:04d}"


def _check_version(batch: BillingBatch, expected_version: int | None) -> None:
    if expected_version is not None and expected_version != batch.version:
        raise ConcurrentTransitionError(
            str(batch.batch_id), expected_version, batch.version
        )


def _require_editable(batch: BillingBatch, operation: str) -> None:
    if batch.is_frozen:
        raise BatchImmutableError(str(batch.batch_id), batch.status.value, operation)
    if batch.status == BatchStatus.REVIEW:
        raise BatchUnderReviewError(str(batch.batch_id), operation)


def _require_transition(batch: BillingBatch, target: BatchStatus) -> Transition:
    transition = BILLING_BATCH_WORKFLOW.find_transition(batch.status.value, target.value)
    if transition is None:
        raise InvalidBatchTransitionError(
            str(batch.batch_id), batch.status.value, target.value
        )
    return transition


def _transition(
    batch: BillingBatch,
    target: BatchStatus,
    expected_version: int | None,
    **changes,
) -> BillingBatch:
    _check_version(batch, expected_version)
    transition = _require_transition(batch, target)
    updated = replace(batch, status=target, version=batch.version + 1, **changes)
    logger.info(
        "batch_transitioned",
        extra={
            "batch_id": str(batch.batch_id),
            "batch_number": batch.batch_number,
            "action": transition.action,
            "from_status": batch.status.value,
            "to_status": target.value,
            "version": updated.version,
        },
    )
    return updated


# -----------------------------------------------------------------------------
# Construction and membership
# -----------------------------------------------------------------------------


def create_batch(
    *,
    customer_id: UUID | str,
    period_year: int,
    period_month: int,
    sequence: int,
    prefix: str = "B",
    batch_id: UUID | None = None,
    created_at: datetime | None = None,
    notes: str | None = None,
    entries: Iterable[TimeEntry] = (),
) -> BillingBatch:
    """Start a new draft batch, optionally seeded with entries."""
    if not 1 <= period_month <= 12:
        raise ValueError(f"period_month must be 1-12, got {period_month}")
    if sequence < 1:
        raise ValueError(f"sequence must be positive, got {sequence}")

    batch = BillingBatch(
        batch_id=batch_id or uuid4(),
        batch_number=format_batch_number(prefix, period_year, period_month, sequence),
        customer_id=customer_id,
        period_year=period_year,
        period_month=period_month,
        created_at=created_at,
        notes=notes,
    )
    for entry in entries:
        batch = add_entry(batch, entry)
    if batch.entries:
        # Seeding is part of creation, not a separate change.
        batch = replace(batch, version=1)

    logger.info(
        "batch_created",
        extra={
            "batch_id": str(batch.batch_id),
            "batch_number": batch.batch_number,
            "customer_id": str(customer_id),
            "entry_count": len(batch.entries),
        },
    )
    return batch


def add_entry(
    batch: BillingBatch,
    entry: TimeEntry,
    *,
    expected_version: int | None = None,
) -> BillingBatch:
    _check_version(batch, expected_version)
    _require_editable(batch, "add entry to")
    if entry.is_exported:
        raise EntryAlreadyExportedError(str(entry.id), "add to batch")
    if batch.find_entry(entry.id) is not None:
        raise DuplicateBatchEntryError(str(batch.batch_id), str(entry.id))
    return replace(batch, entries=batch.entries + (entry,), version=batch.version + 1)


def remove_entry(
    batch: BillingBatch,
    entry_id: UUID | str,
    *,
    expected_version: int | None = None,
) -> BillingBatch:
    _check_version(batch, expected_version)
    _require_editable(batch, "remove entry from")
    if batch.find_entry(entry_id) is None:
        raise BatchEntryNotFoundError(str(batch.batch_id), str(entry_id))
    key = str(entry_id)
    remaining = tuple(e for e in batch.entries if str(e.id) != key)
    return replace(batch, entries=remaining, version=batch.version + 1)


def replace_entry(
    batch: BillingBatch,
    entry: TimeEntry,
    *,
    expected_version: int | None = None,
) -> BillingBatch:
    """Swap a member entry for an edited copy with the same id."""
    _check_version(batch, expected_version)
    _require_editable(batch, "edit entry in")
    current = batch.find_entry(entry.id)
    if current is None:
        raise BatchEntryNotFoundError(str(batch.batch_id), str(entry.id))
    if current.is_exported or entry.is_exported:
        raise EntryAlreadyExportedError(str(entry.id), "edit")
    key = str(entry.id)
    entries = tuple(entry if str(e.id) == key else e for e in batch.entries)
    return replace(batch, entries=entries, version=batch.version + 1)


# -----------------------------------------------------------------------------
# Transitions
# -----------------------------------------------------------------------------


def submit_for_review(
    batch: BillingBatch,
    agreements: Mapping[str, Agreement] | Iterable[Agreement],
    *,
    currency: Currency | str,
    charged_fixed_fee_agreement_ids: Iterable[str] = (),
    expected_version: int | None = None,
) -> BillingBatch:
    """draft -> review: require entries, then recompute and freeze totals."""
    _check_version(batch, expected_version)
    _require_transition(batch, BatchStatus.REVIEW)
    if not batch.entries:
        raise EmptyBatchError(str(batch.batch_id))

    totals = compute_batch_totals(
        batch.entries,
        agreements,
        currency=currency,
        charged_fixed_fee_agreement_ids=charged_fixed_fee_agreement_ids,
    )
    return _transition(batch, BatchStatus.REVIEW, None, totals=totals)


def return_to_draft(
    batch: BillingBatch,
    *,
    expected_version: int | None = None,
) -> BillingBatch:
    """review -> draft: the correction path.  Frozen totals are discarded."""
    return _transition(batch, BatchStatus.DRAFT, expected_version, totals=None)


def record_export(
    batch: BillingBatch,
    outcome: ExportOutcome,
    *,
    at: datetime,
    actor_id: UUID | str | None = None,
    expected_version: int | None = None,
) -> BillingBatch:
    """
    review -> exported, given the outcome of the external export.

    Raises:
        BatchExportFailedError: If ``outcome`` reports failure.  The caller
            keeps the unchanged batch, which is still in review.
    """
    _check_version(batch, expected_version)
    _require_transition(batch, BatchStatus.EXPORTED)
    if not outcome.succeeded:
        logger.warning(
            "batch_export_failed",
            extra={
                "batch_id": str(batch.batch_id),
                "batch_number": batch.batch_number,
                "reason": outcome.error,
            },
        )
        raise BatchExportFailedError(str(batch.batch_id), outcome.error)

    exported_entries = tuple(e.mark_exported(batch.batch_id) for e in batch.entries)
    return _transition(
        batch,
        BatchStatus.EXPORTED,
        None,
        entries=exported_entries,
        exported_at=at,
        exported_by=actor_id,
        external_invoice_number=outcome.reference,
    )


def lock_batch(
    batch: BillingBatch,
    *,
    expected_version: int | None = None,
) -> BillingBatch:
    """exported -> locked: administrative finalization."""
    return _transition(batch, BatchStatus.LOCKED, expected_version)


def transition_batch(
    batch: BillingBatch,
    target: BatchStatus | str,
    *,
    agreements: Mapping[str, Agreement] | Iterable[Agreement] | None = None,
    currency: Currency | str | None = None,
    outcome: ExportOutcome | None = None,
    at: datetime | None = None,
    actor_id: UUID | str | None = None,
    charged_fixed_fee_agreement_ids: Iterable[str] = (),
    expected_version: int | None = None,
) -> BillingBatch:
    """
    Move ``batch`` to ``target`` through the matching transition function.

    ``draft -> draft`` is a no-op and returns the batch unchanged.
    """
    target = BatchStatus(target)
    _check_version(batch, expected_version)
    _require_transition(batch, target)

    if batch.status == BatchStatus.DRAFT and target == BatchStatus.DRAFT:
        return batch
    if target == BatchStatus.REVIEW:
        if agreements is None or currency is None:
            raise ValueError("agreements and currency are required to submit for review")
        return submit_for_review(
            batch,
            agreements,
            currency=currency,
            charged_fixed_fee_agreement_ids=charged_fixed_fee_agreement_ids,
        )
    if target == BatchStatus.DRAFT:
        return return_to_draft(batch)
    if target == BatchStatus.EXPORTED:
        if outcome is None or at is None:
            raise ValueError("outcome and at are required to record an export")
        return record_export(batch, outcome, at=at, actor_id=actor_id)
    return lock_batch(batch)


def preview_totals(
    batch: BillingBatch,
    agreements: Mapping[str, Agreement] | Iterable[Agreement],
    *,
    currency: Currency | str,
    charged_fixed_fee_agreement_ids: Iterable[str] = (),
) -> BatchTotals:
    """Live totals for a draft; the frozen totals once reviewed."""
    if batch.status != BatchStatus.DRAFT and batch.totals is not None:
        return batch.totals
    return compute_batch_totals(
        batch.entries,
        agreements,
        currency=currency,
        charged_fixed_fee_agreement_ids=charged_fixed_fee_agreement_ids,
    )
