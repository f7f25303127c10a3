"""
billing_batch.domain -- Pure types and state machine for billing batches.

ZERO I/O.  All types are frozen dataclasses.
"""

from billing_batch.domain.types import (
    FROZEN_STATUSES,
    MUTABLE_STATUSES,
    BatchStatus,
    BillingBatch,
    ExportOutcome,
)
from billing_batch.domain.workflow import (
    BILLING_BATCH_WORKFLOW,
    add_entry,
    can_transition,
    create_batch,
    format_batch_number,
    lock_batch,
    preview_totals,
    record_export,
    remove_entry,
    replace_entry,
    return_to_draft,
    submit_for_review,
    transition_batch,
)

__all__ = [
    "BILLING_BATCH_WORKFLOW",
    "BatchStatus",
    "BillingBatch",
    "ExportOutcome",
    "FROZEN_STATUSES",
    "MUTABLE_STATUSES",
    "add_entry",
    "can_transition",
    "create_batch",
    "format_batch_number",
    "lock_batch",
    "preview_totals",
    "record_export",
    "remove_entry",
    "replace_entry",
    "return_to_draft",
    "submit_for_review",
    "transition_batch",
]
