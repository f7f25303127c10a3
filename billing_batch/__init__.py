"""
billing_batch -- Billing batch lifecycle.

Groups a customer's time entries for one month into a batch, freezes the
batch's totals for review, records the external export and locks the
result.

Architecture:
    billing_batch/ is a top-level package.  Nothing in billing_kernel/ or
    billing_engines/ imports from billing_batch.

    domain/    pure state machine over frozen BillingBatch snapshots
    models/    ORM persistence for batches and batch membership
    services/  serialized, compare-and-swap transitions over the database
"""
