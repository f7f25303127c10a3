"""
billing_kernel.domain -- Pure value objects shared by engines and services.

ZERO I/O.  All types are frozen dataclasses or str enums.
"""

from billing_kernel.domain.agreements import (
    Agreement,
    AgreementPeriod,
    AgreementStatus,
    AgreementType,
    BillingType,
    TimeEntry,
)
from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.values import Currency, Money

__all__ = [
    "Agreement",
    "AgreementPeriod",
    "AgreementStatus",
    "AgreementType",
    "BillingType",
    "Clock",
    "Currency",
    "DeterministicClock",
    "Money",
    "SystemClock",
    "TimeEntry",
]
