"""Services for the billing kernel (write side)."""

from billing_kernel.services.sequence_service import SequenceCounter, SequenceService
from billing_kernel.services.timebank_service import TimebankService

__all__ = [
    "SequenceCounter",
    "SequenceService",
    "TimebankService",
]
