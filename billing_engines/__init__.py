"""
Module: billing_engines
Responsibility:
    Package entrypoint that re-exports the pure billing calculators: period
    boundaries, timebank status, billing split and batch totals.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import billing_kernel.domain, billing_kernel.exceptions and
    billing_kernel.logging_config (and sibling engine modules).
    MUST NOT import services, models or billing_config.

Invariants enforced:
    - Engines never call ``date.today()`` directly.  "Today" comes from an
      explicit reference date or an injected ``Clock``.
    - Decimal-only arithmetic: hours and amounts are ``Decimal``.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from billing_engines import calculate_timebank_status, calculate_billing_with_split
"""

from billing_engines.amounts import (
    BatchTotals,
    compute_batch_totals,
    entry_billable_amount,
)
from billing_engines.periods import (
    billing_period_code,
    current_period_end,
    current_period_start,
    days_until_indexation,
    is_indexation_overdue,
    is_indexation_warning_needed,
    resolve_reference_date,
)
from billing_engines.split import (
    BillingLine,
    BillingResult,
    BillingSplit,
    MinuteSplit,
    calculate_billing_with_split,
    calculate_minute_split,
    classify_time,
)
from billing_engines.timebank import (
    TimebankStatus,
    TimebankView,
    calculate_timebank_status,
    hours_used_in_period,
    resolve_timebank_status,
    timebank_status_from_view,
)

__all__ = [
    "BatchTotals",
    "BillingLine",
    "BillingResult",
    "BillingSplit",
    "MinuteSplit",
    "TimebankStatus",
    "TimebankView",
    "billing_period_code",
    "calculate_billing_with_split",
    "calculate_minute_split",
    "calculate_timebank_status",
    "classify_time",
    "compute_batch_totals",
    "current_period_end",
    "current_period_start",
    "days_until_indexation",
    "entry_billable_amount",
    "hours_used_in_period",
    "is_indexation_overdue",
    "is_indexation_warning_needed",
    "resolve_reference_date",
    "resolve_timebank_status",
    "timebank_status_from_view",
]
