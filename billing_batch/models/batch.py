"""
ORM models for billing batch persistence.

Contract:
    BillingBatchModel persists the batch header and its frozen totals;
    BillingBatchEntryModel persists membership.  ``to_dto()`` rebuilds the
    pure ``BillingBatch`` snapshot given the member time entries.

Architecture: billing_batch/models. Imports from billing_kernel.db.base and
    the pure batch domain only.

Invariants enforced:
    - ``batch_number`` is UNIQUE.
    - ``time_entry_id`` is UNIQUE on BillingBatchEntryModel, so a time
      entry belongs to at most one batch.
    - ``version`` is the compare-and-swap token for every change.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from billing_kernel.domain.agreements import TimeEntry
    from billing_batch.domain.types import BillingBatch


class BillingBatchModel(TrackedBase):
    """Persistent billing batch header."""

    __tablename__ = "billing_batches"

    __table_args__ = (
        Index("ix_billing_batches_customer_period", "customer_id", "period_year", "period_month"),
        Index("ix_billing_batches_status", "status"),
    )

    batch_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    customer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    period_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_month: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    totals: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    exported_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    exported_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    external_invoice_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self, entries: Iterable[TimeEntry]) -> BillingBatch:
        from billing_batch.domain.types import BatchStatus, BillingBatch
        from billing_engines.amounts import BatchTotals

        return BillingBatch(
            batch_id=self.id,
            batch_number=self.batch_number,
            customer_id=self.customer_id,
            period_year=self.period_year,
            period_month=self.period_month,
            status=BatchStatus(self.status),
            entries=tuple(entries),
            totals=BatchTotals.from_dict(self.totals) if self.totals else None,
            version=self.version,
            created_at=self.created_at,
            exported_at=self.exported_at,
            exported_by=self.exported_by,
            external_invoice_number=self.external_invoice_number,
            notes=self.notes,
        )

    @classmethod
    def from_dto(cls, dto: BillingBatch, created_by_id: UUID) -> BillingBatchModel:
        return cls(
            id=dto.batch_id,
            batch_number=dto.batch_number,
            customer_id=dto.customer_id,
            period_year=dto.period_year,
            period_month=dto.period_month,
            status=dto.status.value,
            version=dto.version,
            totals=dto.totals.to_dict() if dto.totals else None,
            exported_at=dto.exported_at,
            exported_by=dto.exported_by,
            external_invoice_number=dto.external_invoice_number,
            notes=dto.notes,
            created_by_id=created_by_id,
            updated_by_id=None,
        )


class BillingBatchEntryModel(TrackedBase):
    """Membership of one time entry in one billing batch."""

    __tablename__ = "billing_batch_entries"

    __table_args__ = (
        Index("ix_billing_batch_entries_batch", "batch_id", "position"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("billing_batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    time_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("time_entries.id"),
        nullable=False,
        unique=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
