"""
Billing amounts and batch totals (``billing_engines.amounts``).

Responsibility
--------------
Prices individual classified time entries and aggregates a set of them
into the totals a billing batch freezes when it goes to review.

Architecture position
---------------------
**Engines layer** -- pure functional core.  ZERO I/O.  Agreements are
passed in by the caller.  Fixed fees already charged by other batches in
the agreement's own period (a month or a calendar year, per its cadence)
are resolved by the caller and passed in as
``charged_fixed_fee_agreement_ids``.

Invariants enforced
-------------------
* Pool (``timebank``) time costs nothing: it was paid for up front.
* ``fixed`` and ``internal`` entries, and non-billable entries, cost nothing
  per hour.
* A fixed agreement's ``fixed_amount`` is charged once per agreement
  period: within one call it is added once regardless of entry count, and
  it is never added for agreements listed as already charged in that
  period.
* ``total_amount = overtime_amount + hourly_amount + fixed_fee_amount``.

Failure modes
-------------
* ``AgreementNotFoundError`` when an entry references an agreement that
  was not supplied.
* ``AgreementValidationError`` when a billable entry cannot be priced
  because its rate is missing.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal

from billing_kernel.domain.agreements import (
    Agreement,
    AgreementType,
    BillingType,
    TimeEntry,
)
from billing_kernel.domain.values import ZERO, Currency, Money
from billing_kernel.exceptions import AgreementNotFoundError, AgreementValidationError
from billing_kernel.logging_config import get_logger
from billing_engines.tracer import traced_engine

logger = get_logger("engines.amounts")

_UNPRICED = (BillingType.TIMEBANK, BillingType.FIXED, BillingType.INTERNAL)


@dataclass(frozen=True)
class BatchTotals:
    """Hours and money aggregated over a batch's member entries."""

    currency: Currency
    timebank_hours: Decimal
    overtime_hours: Decimal
    hourly_hours: Decimal
    fixed_hours: Decimal
    internal_hours: Decimal
    billable_hours: Decimal
    overtime_amount: Money
    hourly_amount: Money
    fixed_fee_amount: Money
    total_amount: Money
    entry_count: int
    fixed_fee_agreement_ids: tuple[str, ...] = ()

    @property
    def total_hours(self) -> Decimal:
        return (
            self.timebank_hours
            + self.overtime_hours
            + self.hourly_hours
            + self.fixed_hours
            + self.internal_hours
        )

    def to_dict(self) -> dict:
        """JSON-safe representation (Decimals as strings)."""
        return {
            "currency": self.currency.code,
            "timebank_hours": str(self.timebank_hours),
            "overtime_hours": str(self.overtime_hours),
            "hourly_hours": str(self.hourly_hours),
            "fixed_hours": str(self.fixed_hours),
            "internal_hours": str(self.internal_hours),
            "billable_hours": str(self.billable_hours),
            "overtime_amount": str(self.overtime_amount.amount),
            "hourly_amount": str(self.hourly_amount.amount),
            "fixed_fee_amount": str(self.fixed_fee_amount.amount),
            "total_amount": str(self.total_amount.amount),
            "entry_count": self.entry_count,
            "fixed_fee_agreement_ids": list(self.fixed_fee_agreement_ids),
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> BatchTotals:
        currency = Currency(data["currency"])

        def money(key: str) -> Money:
            return Money(amount=Decimal(data[key]), currency=currency)

        return cls(
            currency=currency,
            timebank_hours=Decimal(data["timebank_hours"]),
            overtime_hours=Decimal(data["overtime_hours"]),
            hourly_hours=Decimal(data["hourly_hours"]),
            fixed_hours=Decimal(data["fixed_hours"]),
            internal_hours=Decimal(data["internal_hours"]),
            billable_hours=Decimal(data["billable_hours"]),
            overtime_amount=money("overtime_amount"),
            hourly_amount=money("hourly_amount"),
            fixed_fee_amount=money("fixed_fee_amount"),
            total_amount=money("total_amount"),
            entry_count=int(data["entry_count"]),
            fixed_fee_agreement_ids=tuple(data.get("fixed_fee_agreement_ids", ())),
        )


def _entry_rate(entry: TimeEntry, agreement: Agreement | None) -> Decimal:
    if entry.billing_type == BillingType.OVERTIME:
        candidates = (
            agreement.overtime_rate if agreement else None,
            entry.hourly_rate,
        )
    else:
        candidates = (
            entry.hourly_rate,
            agreement.hourly_rate_evening if agreement and entry.is_evening else None,
            agreement.hourly_rate if agreement else None,
        )
    for rate in candidates:
        if rate is not None:
            return rate

    if agreement is None:
        raise AgreementNotFoundError(str(entry.agreement_id), str(entry.id))
    field = "overtime_rate" if entry.billing_type == BillingType.OVERTIME else "hourly_rate"
    raise AgreementValidationError(
        str(agreement.id), field, f"is required to price {entry.billing_type.value} entry {entry.id}"
    )


@traced_engine("entry_amount", "1.0", fingerprint_fields=("entry", "agreement"))
def entry_billable_amount(
    entry: TimeEntry,
    agreement: Agreement | None,
    *,
    currency: Currency | str,
) -> Money:
    """
    Incremental billable amount of one classified entry.

    ``overtime`` is priced at the agreement's ``overtime_rate``.  ``hourly``
    uses the entry's own rate when present, else ``hourly_rate_evening`` for
    evening work when the agreement sets one, else ``hourly_rate``.
    Everything else is zero.
    """
    if isinstance(currency, str):
        currency = Currency(currency)
    if not entry.is_billable or entry.billing_type in _UNPRICED:
        return Money.zero(currency)
    rate = _entry_rate(entry, agreement)
    return Money(amount=entry.effective_hours * rate, currency=currency)


def _index_agreements(
    agreements: Mapping[str, Agreement] | Iterable[Agreement],
) -> dict[str, Agreement]:
    if isinstance(agreements, Mapping):
        return {str(key): value for key, value in agreements.items()}
    return {str(a.id): a for a in agreements}


@traced_engine(
    "batch_totals",
    "1.0",
    fingerprint_fields=("entries", "charged_fixed_fee_agreement_ids"),
)
def compute_batch_totals(
    entries: Iterable[TimeEntry],
    agreements: Mapping[str, Agreement] | Iterable[Agreement],
    *,
    currency: Currency | str,
    charged_fixed_fee_agreement_ids: Iterable[str] = (),
) -> BatchTotals:
    """
    Aggregate hours and money over ``entries``.

    Args:
        entries: Member time entries.
        agreements: Agreements referenced by the entries, as a mapping keyed
            by id or any iterable.
        currency: Currency of the totals.
        charged_fixed_fee_agreement_ids: Fixed agreements whose fee another
            batch already charged within the agreement's own period.  The
            caller works out that window from each agreement's cadence.

    Raises:
        AgreementNotFoundError: If an entry's agreement is not supplied.
    """
    if isinstance(currency, str):
        currency = Currency(currency)
    by_id = _index_agreements(agreements)
    already_charged = {str(a) for a in charged_fixed_fee_agreement_ids}

    hours = {bt: ZERO for bt in BillingType}
    billable_hours = ZERO
    overtime_amount = Money.zero(currency)
    hourly_amount = Money.zero(currency)
    fee_agreements: dict[str, Agreement] = {}
    skipped: set[str] = set()
    count = 0

    for entry in entries:
        count += 1
        agreement = None
        if entry.agreement_id is not None:
            agreement = by_id.get(str(entry.agreement_id))
            if agreement is None:
                raise AgreementNotFoundError(str(entry.agreement_id), str(entry.id))

        hours[entry.billing_type] += entry.effective_hours
        amount = entry_billable_amount(entry, agreement, currency=currency)
        if entry.billing_type == BillingType.OVERTIME:
            overtime_amount = overtime_amount + amount
        elif entry.billing_type == BillingType.HOURLY:
            hourly_amount = hourly_amount + amount
        if entry.is_billable and entry.billing_type in (BillingType.OVERTIME, BillingType.HOURLY):
            billable_hours += entry.effective_hours

        if agreement is not None and agreement.type == AgreementType.FIXED:
            key = str(agreement.id)
            if key in already_charged:
                skipped.add(key)
            else:
                fee_agreements.setdefault(key, agreement)

    fixed_fee_amount = Money.zero(currency)
    for key in sorted(fee_agreements):
        agreement = fee_agreements[key]
        agreement.validate()
        fixed_fee_amount = fixed_fee_amount + Money(
            amount=agreement.fixed_amount, currency=currency
        )

    if skipped:
        logger.info(
            "fixed_fee_already_charged",
            extra={"agreement_ids": sorted(skipped)},
        )

    return BatchTotals(
        currency=currency,
        timebank_hours=hours[BillingType.TIMEBANK],
        overtime_hours=hours[BillingType.OVERTIME],
        hourly_hours=hours[BillingType.HOURLY],
        fixed_hours=hours[BillingType.FIXED],
        internal_hours=hours[BillingType.INTERNAL],
        billable_hours=billable_hours,
        overtime_amount=overtime_amount,
        hourly_amount=hourly_amount,
        fixed_fee_amount=fixed_fee_amount,
        total_amount=overtime_amount + hourly_amount + fixed_fee_amount,
        entry_count=count,
        fixed_fee_agreement_ids=tuple(sorted(fee_agreements)),
    )
