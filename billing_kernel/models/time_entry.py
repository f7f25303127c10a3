"""
Module: billing_kernel.models.time_entry
Responsibility: ORM persistence for logged work.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Once ``is_exported`` is true the row's classification and hours are
      frozen (ORM listener in db/immutability.py).
    - ``billing_type`` holds a ``BillingType`` value.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UUIDString
from billing_kernel.domain.agreements import TimeEntry


class TimeEntryModel(TrackedBase):
    """Persistent time entry row."""

    __tablename__ = "time_entries"

    __table_args__ = (
        Index("idx_time_entry_agreement_date", "agreement_id", "date"),
        Index("idx_time_entry_customer_date", "customer_id", "date"),
        Index("idx_time_entry_export_batch", "export_batch_id"),
    )

    agreement_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("agreements.id"),
        nullable=True,
    )
    customer_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    entry_date: Mapped[date] = mapped_column("date", Date, nullable=False)

    hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    billing_type: Mapped[str] = mapped_column(String(20), nullable=False)
    hourly_rate: Mapped[Decimal | None] = mapped_column(nullable=True)

    is_billable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_exported: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_evening: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    export_batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> TimeEntry:
        return TimeEntry(
            id=self.id,
            date=self.entry_date,
            billing_type=self.billing_type,
            agreement_id=self.agreement_id,
            customer_id=self.customer_id,
            hours=self.hours,
            minutes=self.minutes,
            is_billable=self.is_billable,
            is_exported=self.is_exported,
            is_evening=self.is_evening,
            hourly_rate=self.hourly_rate,
            export_batch_id=self.export_batch_id,
            description=self.description,
        )

    @classmethod
    def from_dto(cls, dto: TimeEntry, created_by_id: UUID) -> TimeEntryModel:
        return cls(
            id=dto.id,
            agreement_id=dto.agreement_id,
            customer_id=dto.customer_id,
            entry_date=dto.date,
            hours=dto.hours,
            minutes=dto.minutes,
            billing_type=dto.billing_type.value,
            hourly_rate=dto.hourly_rate,
            is_billable=dto.is_billable,
            is_exported=dto.is_exported,
            is_evening=dto.is_evening,
            export_batch_id=dto.export_batch_id,
            description=dto.description,
            created_by_id=created_by_id,
            updated_by_id=None,
        )
