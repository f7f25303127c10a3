"""
Timebank Status Calculator (``billing_engines.timebank``).

Responsibility
--------------
Computes how much of a timebank agreement's pre-purchased pool has been
consumed in the current period: hours used, remaining, overtime and the
percentage consumed.

Two constructors produce the same ``TimebankStatus``:

* ``calculate_timebank_status`` -- authoritative path from raw time entries.
* ``timebank_status_from_view`` -- fast path from a pre-aggregated row
  (the store sums hours server-side).

``resolve_timebank_status`` picks between them at the call boundary: the
view is used when it is complete and current, otherwise the raw entries
are loaded and summed.  Both constructors go through ``_build_status`` so
they cannot drift apart.

Architecture position
---------------------
**Engines layer** -- pure functional core.  ZERO I/O.  Entries are handed
in by the caller (``load_entries`` is a caller-supplied thunk).

Invariants enforced
-------------------
* ``hours_remaining = max(0, included - used)``
* ``overtime_hours = max(0, used - included)``
* ``percent_used`` is capped at 100 and is 0 when nothing is included.
* Only entries inside the period containing the reference date count;
  work logged before or after that period is ignored.

Failure modes
-------------
* ``InvalidAgreementTypeError`` for non-timebank agreements.
* ``AgreementValidationError`` for timebank agreements missing required fields.
* ``TimebankViewIncompleteError`` from ``timebank_status_from_view`` when the
  aggregate row lacks required fields (``resolve_timebank_status`` handles it).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping
from uuid import UUID

from billing_kernel.domain.agreements import (
    Agreement,
    AgreementType,
    BillingType,
    TimeEntry,
)
from billing_kernel.domain.clock import Clock
from billing_kernel.domain.values import ZERO, to_decimal
from billing_kernel.exceptions import (
    InvalidAgreementTypeError,
    TimebankViewIncompleteError,
)
from billing_kernel.logging_config import get_logger
from billing_engines.periods import (
    current_period_end,
    current_period_start,
    resolve_reference_date,
)
from billing_engines.tracer import traced_engine

logger = get_logger("engines.timebank")

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class TimebankStatus:
    """Snapshot of a timebank pool for the current period."""

    included_hours: Decimal
    hours_used: Decimal
    hours_remaining: Decimal
    overtime_hours: Decimal
    percent_used: Decimal
    is_overtime: bool


@dataclass(frozen=True)
class TimebankView:
    """
    Pre-aggregated timebank row as served by the store.

    ``hours_remaining`` is informational; the status is always rebuilt from
    ``included_hours`` and ``hours_used_this_period``.
    """

    agreement_id: UUID | str | None
    included_hours: Decimal | None
    hours_used_this_period: Decimal | None
    hours_remaining: Decimal | None = None
    period_start: date | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> TimebankView:
        def _dec(key: str) -> Decimal | None:
            value = row.get(key)
            return None if value is None else to_decimal(value, key)

        period_start = row.get("period_start")
        if isinstance(period_start, str):
            period_start = date.fromisoformat(period_start[:10])
        elif isinstance(period_start, datetime):
            period_start = period_start.date()

        return cls(
            agreement_id=row.get("agreement_id"),
            included_hours=_dec("included_hours"),
            hours_used_this_period=_dec("hours_used_this_period"),
            hours_remaining=_dec("hours_remaining"),
            period_start=period_start,
        )


def _build_status(included_hours: Decimal, hours_used: Decimal) -> TimebankStatus:
    if included_hours > ZERO:
        percent = min(_HUNDRED, hours_used / included_hours * _HUNDRED)
    else:
        percent = ZERO
    return TimebankStatus(
        included_hours=included_hours,
        hours_used=hours_used,
        hours_remaining=max(ZERO, included_hours - hours_used),
        overtime_hours=max(ZERO, hours_used - included_hours),
        percent_used=percent,
        is_overtime=hours_used > included_hours,
    )


def _require_timebank(agreement: Agreement) -> None:
    if agreement.type != AgreementType.TIMEBANK:
        raise InvalidAgreementTypeError(
            str(agreement.id), AgreementType.TIMEBANK.value, agreement.type.value
        )
    agreement.validate()


def hours_used_in_period(
    agreement: Agreement,
    time_entries: Iterable[TimeEntry],
    period_start: date,
    period_end: date | None = None,
) -> Decimal:
    """
    Sum of timebank-classified hours logged between ``period_start`` and
    ``period_end``, both inclusive.  Without ``period_end`` the window is
    open-ended.
    """
    total = ZERO
    for entry in time_entries:
        if entry.billing_type != BillingType.TIMEBANK:
            continue
        if entry.date < period_start:
            continue
        if period_end is not None and entry.date > period_end:
            continue
        if entry.agreement_id is not None and str(entry.agreement_id) != str(agreement.id):
            continue
        total += entry.effective_hours
    return total


@traced_engine("timebank_status", "1.0", fingerprint_fields=("agreement", "reference_date"))
def calculate_timebank_status(
    agreement: Agreement,
    time_entries: Iterable[TimeEntry],
    reference_date: date | datetime | None = None,
    *,
    clock: Clock | None = None,
) -> TimebankStatus:
    """
    Compute the timebank status for the period containing ``reference_date``.

    Args:
        agreement: A timebank agreement.
        time_entries: Entries logged against the agreement (any period).
        reference_date: Day inside the period of interest; defaults to today.
        clock: Clock used when ``reference_date`` is omitted.

    Raises:
        InvalidAgreementTypeError: If the agreement is not a timebank.
        AgreementValidationError: If required timebank fields are missing.
    """
    _require_timebank(agreement)
    period_start = current_period_start(agreement, reference_date, clock=clock)
    period_end = current_period_end(agreement, period_start)
    used = hours_used_in_period(agreement, time_entries, period_start, period_end)
    status = _build_status(agreement.included_hours, used)

    logger.debug(
        "timebank_status_calculated",
        extra={
            "agreement_id": str(agreement.id),
            "period_start": period_start,
            "hours_used": status.hours_used,
            "hours_remaining": status.hours_remaining,
            "is_overtime": status.is_overtime,
            "source": "entries",
        },
    )
    return status


@traced_engine("timebank_status_view", "1.0", fingerprint_fields=("view",))
def timebank_status_from_view(
    view: TimebankView | Mapping[str, Any],
) -> TimebankStatus:
    """
    Build a status from a pre-aggregated row.

    Raises:
        TimebankViewIncompleteError: If ``included_hours`` or
            ``hours_used_this_period`` is absent.
    """
    if not isinstance(view, TimebankView):
        view = TimebankView.from_row(view)

    missing = tuple(
        name
        for name in ("included_hours", "hours_used_this_period")
        if getattr(view, name) is None
    )
    if missing:
        raise TimebankViewIncompleteError(
            str(view.agreement_id) if view.agreement_id is not None else None,
            missing,
        )
    return _build_status(view.included_hours, view.hours_used_this_period)


def _view_rejection(
    agreement: Agreement,
    view: TimebankView | None,
    period_start: date,
) -> str | None:
    """Reason the view cannot stand in for the raw entries, or None."""
    if view is None:
        return "view_missing"
    if view.agreement_id is not None and str(view.agreement_id) != str(agreement.id):
        return "view_for_other_agreement"
    if view.period_start is not None and view.period_start != period_start:
        return "view_period_stale"
    if (
        view.included_hours is not None
        and view.included_hours != agreement.included_hours
    ):
        return "view_included_hours_stale"
    return None


@traced_engine(
    "timebank_status_resolve",
    "1.0",
    fingerprint_fields=("agreement", "view", "reference_date"),
)
def resolve_timebank_status(
    agreement: Agreement,
    view: TimebankView | Mapping[str, Any] | None,
    load_entries: Callable[[], Iterable[TimeEntry]],
    reference_date: date | datetime | None = None,
    *,
    clock: Clock | None = None,
) -> TimebankStatus:
    """
    Use the aggregate view when it is usable, else recompute from entries.

    ``load_entries`` is only called on fallback.  Fallbacks are logged and
    never surfaced as errors: the raw-entry path is slower but authoritative.
    """
    _require_timebank(agreement)
    ref = resolve_reference_date(reference_date, clock)
    period_start = current_period_start(agreement, ref)

    if view is not None and not isinstance(view, TimebankView):
        view = TimebankView.from_row(view)

    reason = _view_rejection(agreement, view, period_start)
    if reason is None:
        try:
            return timebank_status_from_view(view)
        except TimebankViewIncompleteError as exc:
            reason = "view_incomplete"
            logger.info(
                "timebank_view_incomplete",
                extra={
                    "agreement_id": str(agreement.id),
                    "missing_fields": list(exc.missing_fields),
                },
            )

    logger.info(
        "timebank_view_fallback",
        extra={"agreement_id": str(agreement.id), "reason": reason},
    )
    return calculate_timebank_status(agreement, load_entries(), ref)
