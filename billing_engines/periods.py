"""
Period Calculator (``billing_engines.periods``).

Responsibility
--------------
Computes the boundaries of an agreement's current consumption period and
decides whether an upcoming price indexation deserves a warning.

Architecture position
---------------------
**Engines layer** -- pure functional core.  ZERO I/O, ZERO database.
The reference date is an explicit parameter; when omitted it is read from
an injected ``Clock`` (``SystemClock`` by default), never from
``date.today()`` directly.

Invariants enforced
-------------------
* Yearly periods anchor to calendar years, not to the agreement's
  ``valid_from`` anniversary.
* Same agreement and reference date always give the same boundaries.
* A past-due indexation is never reported as a warning.

Failure modes
-------------
* ``AgreementValidationError`` when a timebank or fixed agreement has no
  ``period``.
* ``ValueError`` for a negative warning window (programming error).
"""

from __future__ import annotations

import calendar
from datetime import date, datetime

from billing_kernel.domain.agreements import Agreement, AgreementPeriod, AgreementType
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import AgreementValidationError
from billing_engines.tracer import traced_engine

_PERIOD_REQUIRED = (AgreementType.TIMEBANK, AgreementType.FIXED)


def resolve_reference_date(
    reference_date: date | datetime | None,
    clock: Clock | None = None,
) -> date:
    """Reduce ``reference_date`` to a ``date``, defaulting to the clock's today."""
    if reference_date is None:
        return (clock or SystemClock()).today()
    if isinstance(reference_date, datetime):
        return reference_date.date()
    return reference_date


def _period_of(agreement: Agreement) -> AgreementPeriod:
    if agreement.period is not None:
        return agreement.period
    if agreement.type in _PERIOD_REQUIRED:
        raise AgreementValidationError(
            str(agreement.id),
            "period",
            f"is required for {agreement.type.value} agreements",
        )
    # Hourly agreements follow the monthly billing cadence.
    return AgreementPeriod.MONTHLY


@traced_engine("period_start", "1.0", fingerprint_fields=("agreement", "reference_date"))
def current_period_start(
    agreement: Agreement,
    reference_date: date | datetime | None = None,
    *,
    clock: Clock | None = None,
) -> date:
    """
    First day of the agreement's period containing ``reference_date``.

    Monthly: first day of the reference month.
    Yearly: January 1 of the reference year.
    """
    ref = resolve_reference_date(reference_date, clock)
    if _period_of(agreement) == AgreementPeriod.MONTHLY:
        return ref.replace(day=1)
    return date(ref.year, 1, 1)


@traced_engine("period_end", "1.0", fingerprint_fields=("agreement", "reference_date"))
def current_period_end(
    agreement: Agreement,
    reference_date: date | datetime | None = None,
    *,
    clock: Clock | None = None,
) -> date:
    """Last day (inclusive) of the agreement's period containing ``reference_date``."""
    ref = resolve_reference_date(reference_date, clock)
    if _period_of(agreement) == AgreementPeriod.MONTHLY:
        last_day = calendar.monthrange(ref.year, ref.month)[1]
        return ref.replace(day=last_day)
    return date(ref.year, 12, 31)


def billing_period_code(day: date | datetime) -> str:
    """Monthly billing period label, e.g. ``"2026-03"``."""
    return f"{day.year:04d}-{day.month:02d}"


@traced_engine("indexation_days", "1.0", fingerprint_fields=("agreement", "reference_date"))
def days_until_indexation(
    agreement: Agreement,
    reference_date: date | datetime | None = None,
    *,
    clock: Clock | None = None,
) -> int | None:
    """Whole days from the reference date to ``next_indexation``; negative if past."""
    if agreement.next_indexation is None:
        return None
    ref = resolve_reference_date(reference_date, clock)
    return (agreement.next_indexation - ref).days


@traced_engine(
    "indexation_warning",
    "1.0",
    fingerprint_fields=("agreement", "reference_date", "warning_window_days"),
)
def is_indexation_warning_needed(
    agreement: Agreement,
    reference_date: date | datetime | None,
    warning_window_days: int,
    *,
    clock: Clock | None = None,
) -> bool:
    """
    True iff an indexation is scheduled within the next ``warning_window_days``.

    The window is inclusive on both ends: an indexation today or exactly
    ``warning_window_days`` ahead warns; one already past does not (see
    ``is_indexation_overdue``).
    """
    if warning_window_days < 0:
        raise ValueError(
            f"warning_window_days must be non-negative, got {warning_window_days}"
        )
    days = days_until_indexation(agreement, reference_date, clock=clock)
    if days is None:
        return False
    return 0 <= days <= warning_window_days


@traced_engine("indexation_overdue", "1.0", fingerprint_fields=("agreement", "reference_date"))
def is_indexation_overdue(
    agreement: Agreement,
    reference_date: date | datetime | None = None,
    *,
    clock: Clock | None = None,
) -> bool:
    """True if ``next_indexation`` is set and already in the past."""
    days = days_until_indexation(agreement, reference_date, clock=clock)
    return days is not None and days < 0
