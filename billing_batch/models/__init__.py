"""ORM models for billing batch persistence."""

from billing_batch.models.batch import BillingBatchEntryModel, BillingBatchModel

__all__ = [
    "BillingBatchEntryModel",
    "BillingBatchModel",
]
