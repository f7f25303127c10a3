"""
Billing Split Calculator (``billing_engines.split``).

Responsibility
--------------
Splits newly logged work between a timebank's remaining pool and overtime,
and classifies logged work into priced billing lines for every agreement
type.

Architecture position
---------------------
**Engines layer** -- pure functional core.  ZERO I/O.  The remaining pool
balance is an explicit argument; this module never reads or writes it.
Callers that log work concurrently against one agreement must serialize
"read balance, split, persist" themselves (see
``billing_kernel.services.timebank_service``).

Invariants enforced
-------------------
* Split law: ``pool_hours + overtime_hours == logged_hours`` for every
  non-negative ``logged_hours`` and any remaining balance, negative included.
* A negative remaining balance is an exhausted pool, not an error.
* ``classify_time`` line hours always sum to ``logged_hours``.
* ``BillingResult.total_amount`` is the sum of its line amounts.

Failure modes
-------------
* ``InvalidHoursError`` for negative or non-numeric logged time.
* ``AgreementValidationError`` when the agreement lacks the rate needed to
  price the work, or a timebank split is requested without a balance.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from billing_kernel.domain.agreements import Agreement, AgreementType, BillingType
from billing_kernel.domain.values import ZERO, Currency, Money, to_decimal, to_hours
from billing_kernel.exceptions import AgreementValidationError, InvalidHoursError
from billing_kernel.logging_config import get_logger
from billing_engines.tracer import traced_engine

logger = get_logger("engines.split")


@dataclass(frozen=True)
class BillingSplit:
    """Portion of logged hours covered by the pool and the overtime remainder."""

    pool_hours: Decimal
    overtime_hours: Decimal


@dataclass(frozen=True)
class MinuteSplit:
    """Minute-based twin of ``BillingSplit``."""

    pool_minutes: int
    overtime_minutes: int


@dataclass(frozen=True)
class BillingLine:
    """One priced slice of logged work."""

    hours: Decimal
    billing_type: BillingType
    hourly_rate: Decimal
    amount: Money


@dataclass(frozen=True)
class BillingResult:
    """Lines produced for a single piece of logged work."""

    lines: tuple[BillingLine, ...]
    total_amount: Money

    @property
    def hours(self) -> Decimal:
        return sum((line.hours for line in self.lines), ZERO)


def _split(logged: Decimal, remaining: Decimal) -> tuple[Decimal, Decimal]:
    available = max(ZERO, remaining)
    if available >= logged:
        return logged, ZERO
    return available, logged - available


@traced_engine(
    "billing_split",
    "1.0",
    fingerprint_fields=("logged_hours", "hours_remaining_in_pool"),
)
def calculate_billing_with_split(
    logged_hours: Decimal | int | str,
    hours_remaining_in_pool: Decimal | int | str,
) -> BillingSplit:
    """
    Split ``logged_hours`` against the pool's remaining balance.

    If the pool covers the work entirely, everything is pool time.  Otherwise
    the pool covers what remains and the rest is overtime.  The balance is
    not updated here.

    Raises:
        InvalidHoursError: If ``logged_hours`` is negative or not numeric.
    """
    logged = to_hours(logged_hours, "logged_hours")
    remaining = to_decimal(hours_remaining_in_pool, "hours_remaining_in_pool")
    pool, overtime = _split(logged, remaining)
    return BillingSplit(pool_hours=pool, overtime_hours=overtime)


def _whole_minutes(value: int, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidHoursError(field, value)
    return value


@traced_engine(
    "minute_split",
    "1.0",
    fingerprint_fields=("logged_minutes", "remaining_minutes"),
)
def calculate_minute_split(logged_minutes: int, remaining_minutes: int) -> MinuteSplit:
    """Same rule as ``calculate_billing_with_split`` on whole minutes."""
    logged = _whole_minutes(logged_minutes, "logged_minutes")
    remaining = _whole_minutes(remaining_minutes, "remaining_minutes")
    if logged < 0:
        raise InvalidHoursError("logged_minutes", logged_minutes)
    pool, overtime = _split(Decimal(logged), Decimal(remaining))
    return MinuteSplit(pool_minutes=int(pool), overtime_minutes=int(overtime))


# ---------------------------------------------------------------------------
# Agreement-level classification
# ---------------------------------------------------------------------------


def _line(hours: Decimal, billing_type: BillingType, rate: Decimal, currency: Currency) -> BillingLine:
    return BillingLine(
        hours=hours,
        billing_type=billing_type,
        hourly_rate=rate,
        amount=Money(amount=hours * rate, currency=currency),
    )


def _required_rate(agreement: Agreement, field: str, purpose: str) -> Decimal:
    rate = getattr(agreement, field)
    if rate is None:
        raise AgreementValidationError(str(agreement.id), field, f"is required for {purpose}")
    return rate


def _result(lines: list[BillingLine], currency: Currency) -> BillingResult:
    total = Money.zero(currency)
    for line in lines:
        total = total + line.amount
    return BillingResult(lines=tuple(lines), total_amount=total)


@traced_engine(
    "time_classification",
    "1.0",
    fingerprint_fields=("agreement", "logged_hours", "hours_remaining_in_pool"),
)
def classify_time(
    agreement: Agreement,
    logged_hours: Decimal | int | str,
    hours_remaining_in_pool: Decimal | int | str | None = None,
    *,
    is_extra_billable: bool = False,
    is_evening: bool = False,
    is_internal: bool = False,
    currency: Currency | str,
) -> BillingResult:
    """
    Turn logged work into one or two priced billing lines.

    Args:
        agreement: Agreement the work is billed against.
        logged_hours: Non-negative hours worked.
        hours_remaining_in_pool: Remaining timebank balance, required for
            timebank agreements unless the work is extra-billable.
        is_extra_billable: Work explicitly outside the agreement's scope.
            Timebank agreements bill it all as overtime; fixed agreements
            bill it hourly.
        is_evening: Hourly work billed at ``hourly_rate_evening`` when set.
        is_internal: Non-billable internal work.
        currency: Currency of the produced amounts.

    Returns:
        BillingResult whose line hours sum to ``logged_hours``.
    """
    if isinstance(currency, str):
        currency = Currency(currency)
    logged = to_hours(logged_hours, "logged_hours")
    agreement.validate()

    if is_internal:
        return _result([_line(logged, BillingType.INTERNAL, ZERO, currency)], currency)

    if agreement.type == AgreementType.HOURLY:
        rate = _required_rate(agreement, "hourly_rate", "hourly billing")
        if is_evening and agreement.hourly_rate_evening is not None:
            rate = agreement.hourly_rate_evening
        return _result([_line(logged, BillingType.HOURLY, rate, currency)], currency)

    if agreement.type == AgreementType.FIXED:
        if is_extra_billable:
            rate = _required_rate(agreement, "hourly_rate", "extra-billable work")
            return _result([_line(logged, BillingType.HOURLY, rate, currency)], currency)
        return _result([_line(logged, BillingType.FIXED, ZERO, currency)], currency)

    overtime_rate = agreement.overtime_rate
    if is_extra_billable:
        return _result(
            [_line(logged, BillingType.OVERTIME, overtime_rate, currency)], currency
        )

    if hours_remaining_in_pool is None:
        raise AgreementValidationError(
            str(agreement.id),
            "hours_remaining_in_pool",
            "is required to split timebank work",
        )
    split = calculate_billing_with_split(logged, hours_remaining_in_pool)

    lines: list[BillingLine] = []
    if split.pool_hours > ZERO or split.overtime_hours == ZERO:
        lines.append(_line(split.pool_hours, BillingType.TIMEBANK, ZERO, currency))
    if split.overtime_hours > ZERO:
        lines.append(_line(split.overtime_hours, BillingType.OVERTIME, overtime_rate, currency))

    if len(lines) == 2:
        logger.info(
            "timebank_split_crossed_pool",
            extra={
                "agreement_id": str(agreement.id),
                "pool_hours": split.pool_hours,
                "overtime_hours": split.overtime_hours,
            },
        )
    return _result(lines, currency)
