"""
Agreements and time entries (``billing_kernel.domain.agreements``).

Responsibility
--------------
Frozen value objects for the two inputs every billing calculation starts
from: the commercial agreement a customer signed and the work logged
against it.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  Rows fetched by
the persistence collaborator are turned into these via ``from_row()`` or the
ORM models' ``to_dto()``.

Invariants enforced
-------------------
* ``timebank`` agreements have ``included_hours > 0``, a ``period`` and an
  ``overtime_rate``.
* ``fixed`` agreements have a ``fixed_amount`` and a ``period``.
* Every rate is non-negative.
* Exported time entries cannot change classification or hours.

Failure modes
-------------
* ``AgreementValidationError`` from ``Agreement.validate()``.
* ``EntryAlreadyExportedError`` from ``TimeEntry.with_changes()`` on an
  exported entry.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping
from uuid import UUID

from billing_kernel.domain.values import ZERO, hours_from_minutes, to_decimal
from billing_kernel.exceptions import (
    AgreementValidationError,
    EntryAlreadyExportedError,
)


class AgreementType(str, Enum):
    """Commercial agreement types."""

    HOURLY = "hourly"  # Time and materials, every hour billed
    TIMEBANK = "timebank"  # Pre-purchased hour pool renewing each period
    FIXED = "fixed"  # Flat fee per period, hours logged for statistics


class AgreementPeriod(str, Enum):
    """Cadence at which a timebank pool or fixed fee resets."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class AgreementStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRED = "expired"
    TERMINATED = "terminated"


class BillingType(str, Enum):
    """Classification of a time entry for billing."""

    TIMEBANK = "timebank"  # Covered by the pre-purchased pool
    OVERTIME = "overtime"  # Exceeds the pool, billed at overtime_rate
    HOURLY = "hourly"  # Billed per hour
    FIXED = "fixed"  # Covered by a flat fee
    INTERNAL = "internal"  # Never billed


_RATE_FIELDS = ("hourly_rate", "overtime_rate", "hourly_rate_evening", "fixed_amount")


def _parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise ValueError(f"Cannot parse date from {value!r}")


def _optional_decimal(value: Any, field: str) -> Decimal | None:
    if value is None:
        return None
    return to_decimal(value, field)


@dataclass(frozen=True)
class Agreement:
    """
    A commercial contract defining how a customer's work is billed.

    Contract:
        Construction only coerces types; business rules are checked by
        ``validate()`` so that a misconfigured row can still be inspected
        and reported with a precise error.

    Non-goals:
        Agreements are never deleted here; renegotiation produces a new
        agreement with its own validity window.
    """

    id: UUID | str
    type: AgreementType
    customer_id: UUID | str | None = None
    period: AgreementPeriod | None = None
    included_hours: Decimal | None = None
    hourly_rate: Decimal | None = None
    overtime_rate: Decimal | None = None
    hourly_rate_evening: Decimal | None = None
    fixed_amount: Decimal | None = None
    next_indexation: date | None = None
    valid_from: date | None = None
    valid_to: date | None = None
    status: AgreementStatus = AgreementStatus.ACTIVE

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", AgreementType(self.type))
        if self.period is not None:
            object.__setattr__(self, "period", AgreementPeriod(self.period))
        object.__setattr__(self, "status", AgreementStatus(self.status))
        object.__setattr__(
            self,
            "included_hours",
            _optional_decimal(self.included_hours, "included_hours"),
        )
        for name in _RATE_FIELDS:
            object.__setattr__(
                self, name, _optional_decimal(getattr(self, name), name)
            )
        for name in ("next_indexation", "valid_from", "valid_to"):
            object.__setattr__(self, name, _parse_date(getattr(self, name)))

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Agreement:
        """Build and validate an Agreement from a store row."""
        agreement = cls(
            id=row["id"],
            type=row["type"],
            customer_id=row.get("customer_id"),
            period=row.get("period"),
            included_hours=row.get("included_hours"),
            hourly_rate=row.get("hourly_rate"),
            overtime_rate=row.get("overtime_rate"),
            hourly_rate_evening=row.get("hourly_rate_evening"),
            fixed_amount=row.get("fixed_amount"),
            next_indexation=row.get("next_indexation"),
            valid_from=row.get("valid_from"),
            valid_to=row.get("valid_to"),
            status=row.get("status") or AgreementStatus.ACTIVE,
        )
        agreement.validate()
        return agreement

    def validate(self) -> None:
        """
        Enforce the per-type field requirements.

        Raises:
            AgreementValidationError: On the first violated rule.
        """
        agreement_id = str(self.id)
        for name in _RATE_FIELDS:
            value = getattr(self, name)
            if value is not None and value < ZERO:
                raise AgreementValidationError(agreement_id, name, "must be non-negative")

        if self.type == AgreementType.TIMEBANK:
            if self.included_hours is None or self.included_hours <= ZERO:
                raise AgreementValidationError(
                    agreement_id, "included_hours", "must be positive for timebank agreements"
                )
            if self.period is None:
                raise AgreementValidationError(
                    agreement_id, "period", "is required for timebank agreements"
                )
            if self.overtime_rate is None:
                raise AgreementValidationError(
                    agreement_id, "overtime_rate", "is required for timebank agreements"
                )
        elif self.type == AgreementType.FIXED:
            if self.fixed_amount is None:
                raise AgreementValidationError(
                    agreement_id, "fixed_amount", "is required for fixed agreements"
                )
            if self.period is None:
                raise AgreementValidationError(
                    agreement_id, "period", "is required for fixed agreements"
                )

        if (
            self.valid_from is not None
            and self.valid_to is not None
            and self.valid_to < self.valid_from
        ):
            raise AgreementValidationError(
                agreement_id, "valid_to", "must not precede valid_from"
            )

    def is_valid_on(self, day: date) -> bool:
        """True if ``day`` falls inside the agreement's validity window."""
        if self.valid_from is not None and day < self.valid_from:
            return False
        if self.valid_to is not None and day > self.valid_to:
            return False
        return True


@dataclass(frozen=True)
class TimeEntry:
    """
    A unit of logged work.

    ``hours`` wins over ``minutes`` when both are present; an entry with
    neither contributes zero hours rather than failing.
    """

    id: UUID | str
    date: date
    billing_type: BillingType
    agreement_id: UUID | str | None = None
    customer_id: UUID | str | None = None
    hours: Decimal | None = None
    minutes: int | None = None
    is_billable: bool = True
    is_exported: bool = False
    is_evening: bool = False
    hourly_rate: Decimal | None = None
    export_batch_id: UUID | str | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "billing_type", BillingType(self.billing_type))
        object.__setattr__(self, "date", _parse_date(self.date))
        object.__setattr__(self, "hours", _optional_decimal(self.hours, "hours"))
        object.__setattr__(
            self, "hourly_rate", _optional_decimal(self.hourly_rate, "hourly_rate")
        )

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> TimeEntry:
        return cls(
            id=row["id"],
            date=row["date"],
            billing_type=row["billing_type"],
            agreement_id=row.get("agreement_id"),
            customer_id=row.get("customer_id"),
            hours=row.get("hours"),
            minutes=row.get("minutes"),
            is_billable=bool(row.get("is_billable", True)),
            is_exported=bool(row.get("is_exported", False)),
            is_evening=bool(row.get("is_evening", False)),
            hourly_rate=row.get("hourly_rate"),
            export_batch_id=row.get("export_batch_id"),
            description=row.get("description"),
        )

    @property
    def effective_hours(self) -> Decimal:
        if self.hours is not None:
            return self.hours
        if self.minutes is not None:
            return hours_from_minutes(self.minutes)
        return ZERO

    def with_changes(self, **changes: Any) -> TimeEntry:
        """
        Return a copy with ``changes`` applied.

        Raises:
            EntryAlreadyExportedError: If the entry is exported.
        """
        if self.is_exported:
            raise EntryAlreadyExportedError(str(self.id), "edit")
        return replace(self, **changes)

    def mark_exported(self, batch_id: UUID | str) -> TimeEntry:
        return replace(self, is_exported=True, export_batch_id=batch_id)
