"""
billing_batch.domain.types -- Pure frozen dataclasses for billing batches.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.  Every change to a batch produces a new
``BillingBatch`` with ``version`` incremented.

Invariants enforced:
    - Membership and totals never change once status is exported or locked.
    - ``totals`` is set only while the batch is in review or later.
    - ``entries`` holds each time entry at most once.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from billing_kernel.domain.agreements import TimeEntry
from billing_engines.amounts import BatchTotals


# =============================================================================
# Status enum
# =============================================================================


class BatchStatus(str, Enum):
    """Billing batch lifecycle status."""

    DRAFT = "draft"  # Being assembled; membership editable
    REVIEW = "review"  # Totals frozen, awaiting export
    EXPORTED = "exported"  # Sent to the external system; content frozen
    LOCKED = "locked"  # Administratively finalized


MUTABLE_STATUSES = frozenset({BatchStatus.DRAFT})
FROZEN_STATUSES = frozenset({BatchStatus.EXPORTED, BatchStatus.LOCKED})


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class BillingBatch:
    """Immutable snapshot of a billing batch for one customer and month."""

    batch_id: UUID
    batch_number: str  # e.g. "B-202603-0001"
    customer_id: UUID | str
    period_year: int
    period_month: int
    status: BatchStatus = BatchStatus.DRAFT
    entries: tuple[TimeEntry, ...] = ()
    totals: BatchTotals | None = None
    version: int = 1
    created_at: datetime | None = None
    exported_at: datetime | None = None
    exported_by: UUID | str | None = None
    external_invoice_number: str | None = None
    notes: str | None = None

    @property
    def entry_ids(self) -> tuple[str, ...]:
        return tuple(str(e.id) for e in self.entries)

    @property
    def period_code(self) -> str:
        return f"{self.period_year:04d}-{self.period_month:02d}"

    @property
    def is_frozen(self) -> bool:
        return self.status in FROZEN_STATUSES

    def find_entry(self, entry_id: UUID | str) -> TimeEntry | None:
        key = str(entry_id)
        for entry in self.entries:
            if str(entry.id) == key:
                return entry
        return None


@dataclass(frozen=True)
class ExportOutcome:
    """Result reported by the external export action.

    The state machine only records this; it never performs the export.
    ``reference`` is the external system's invoice number on success.
    """

    succeeded: bool
    reference: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, reference: str | None = None) -> ExportOutcome:
        return cls(succeeded=True, reference=reference)

    @classmethod
    def failure(cls, error: str) -> ExportOutcome:
        return cls(succeeded=False, error=error)
