"""
Module: billing_kernel.models.agreement
Responsibility: ORM persistence for customer agreements.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Agreements are never deleted; renegotiation inserts a new row with its
      own validity window and moves the old one to expired/terminated.
    - ``to_dto()`` validates, so a misconfigured row fails loudly at load
      time instead of producing a wrong bill.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UUIDString
from billing_kernel.domain.agreements import Agreement, AgreementStatus


class AgreementModel(TrackedBase):
    """Persistent agreement row."""

    __tablename__ = "agreements"

    __table_args__ = (
        Index("idx_agreement_customer", "customer_id"),
        Index("idx_agreement_status", "status"),
        Index("idx_agreement_next_indexation", "next_indexation"),
    )

    customer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    period: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AgreementStatus.ACTIVE.value
    )

    included_hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    hourly_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    overtime_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    hourly_rate_evening: Mapped[Decimal | None] = mapped_column(nullable=True)
    fixed_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    next_indexation: Mapped[date | None] = mapped_column(Date, nullable=True)
    valid_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    valid_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    def to_dto(self) -> Agreement:
        agreement = Agreement(
            id=self.id,
            type=self.type,
            customer_id=self.customer_id,
            period=self.period,
            included_hours=self.included_hours,
            hourly_rate=self.hourly_rate,
            overtime_rate=self.overtime_rate,
            hourly_rate_evening=self.hourly_rate_evening,
            fixed_amount=self.fixed_amount,
            next_indexation=self.next_indexation,
            valid_from=self.valid_from,
            valid_to=self.valid_to,
            status=self.status,
        )
        agreement.validate()
        return agreement

    @classmethod
    def from_dto(cls, dto: Agreement, created_by_id: UUID) -> AgreementModel:
        return cls(
            id=dto.id,
            customer_id=dto.customer_id,
            type=dto.type.value,
            period=dto.period.value if dto.period else None,
            status=dto.status.value,
            included_hours=dto.included_hours,
            hourly_rate=dto.hourly_rate,
            overtime_rate=dto.overtime_rate,
            hourly_rate_evening=dto.hourly_rate_evening,
            fixed_amount=dto.fixed_amount,
            next_indexation=dto.next_indexation,
            valid_from=dto.valid_from,
            valid_to=dto.valid_to,
            created_by_id=created_by_id,
            updated_by_id=None,
        )
