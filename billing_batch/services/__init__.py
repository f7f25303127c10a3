"""Database-backed billing batch services."""

from billing_batch.services.batch_service import BillingBatchService

__all__ = [
    "BillingBatchService",
]
