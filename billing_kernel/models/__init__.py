"""ORM models for agreements and time entries."""

from billing_kernel.models.agreement import AgreementModel
from billing_kernel.models.time_entry import TimeEntryModel

__all__ = [
    "AgreementModel",
    "TimeEntryModel",
]
