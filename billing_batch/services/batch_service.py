"""
BillingBatchService -- durable, serialized billing batch lifecycle.

Contract:
    Loads a batch snapshot, applies one pure state-machine function from
    ``billing_batch.domain.workflow`` and persists the result.  Every write
    is a compare-and-swap on ``(id, version)``.

Architecture: billing_batch/services.  Imports from billing_batch.domain,
    billing_batch.models, kernel models and kernel services.

Invariants enforced:
    - Concurrent transitions on one batch serialize: the batch row is
      locked (SELECT ... FOR UPDATE) and the write only lands if the
      version read is still current.  The loser gets
      ConcurrentTransitionError and nothing is written for it.
    - A time entry belongs to at most one batch.
    - A successful export marks every member time entry exported and
      stamps it with the batch id.
    - When the policy says so, a fixed agreement's fee is charged in at
      most one batch per customer and billing period.
    - Batch numbers come from SequenceService, one sequence per month.
    - All timestamps from the injected Clock.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from billing_kernel.domain.agreements import Agreement, AgreementType, TimeEntry
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.exceptions import (
    BatchNotFoundError,
    ConcurrentTransitionError,
    DuplicateBatchEntryError,
    EntryCustomerMismatchError,
    TimeEntryNotFoundError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.agreement import AgreementModel
from billing_kernel.models.time_entry import TimeEntryModel
from billing_kernel.services.sequence_service import SequenceService
from billing_config.schema import BillingPolicy
from billing_engines.amounts import BatchTotals
from billing_engines.periods import current_period_end, current_period_start

from billing_batch.domain import workflow
from billing_batch.domain.types import BatchStatus, BillingBatch, ExportOutcome
from billing_batch.models.batch import BillingBatchEntryModel, BillingBatchModel

logger = get_logger("batch.service")

_CHARGING_STATUSES = (
    BatchStatus.REVIEW.value,
    BatchStatus.EXPORTED.value,
    BatchStatus.LOCKED.value,
)


class BillingBatchService:
    """Billing batch lifecycle over the database.

    Contract:
        - ``create_batch()`` allocates a batch number and persists a draft.
        - ``add_entry()`` / ``remove_entry()`` edit draft membership.
        - ``submit_for_review()``, ``return_to_draft()``,
          ``record_export()`` and ``lock()`` move through the lifecycle.
        - ``get_batch()`` / ``list_batches()`` / ``preview_totals()`` for queries.

        Every mutating call accepts ``expected_version``.  Pass the version
        the caller last saw to turn a silent overwrite into
        ConcurrentTransitionError.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT perform the external export; callers report its outcome.
    """

    def __init__(
        self,
        session: Session,
        policy: BillingPolicy,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
    ):
        self._session = session
        self._policy = policy
        self._clock = clock or SystemClock()
        self._sequence = sequence_service or SequenceService(session)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _batch_model(self, batch_id: UUID | str, *, lock: bool = False) -> BillingBatchModel:
        stmt = select(BillingBatchModel).where(BillingBatchModel.id == batch_id)
        if lock:
            stmt = stmt.with_for_update()
        model = self._session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise BatchNotFoundError(str(batch_id))
        return model

    def _member_entries(self, batch_id: UUID | str) -> list[TimeEntry]:
        rows = self._session.execute(
            select(TimeEntryModel)
            .join(
                BillingBatchEntryModel,
                BillingBatchEntryModel.time_entry_id == TimeEntryModel.id,
            )
            .where(BillingBatchEntryModel.batch_id == batch_id)
            .order_by(BillingBatchEntryModel.position)
        ).scalars()
        return [row.to_dto() for row in rows]

    def _snapshot(self, model: BillingBatchModel) -> BillingBatch:
        return model.to_dto(self._member_entries(model.id))

    def _time_entry(self, entry_id: UUID | str) -> TimeEntryModel:
        row = self._session.execute(
            select(TimeEntryModel).where(TimeEntryModel.id == entry_id)
        ).scalar_one_or_none()
        if row is None:
            raise TimeEntryNotFoundError(str(entry_id))
        return row

    def _require_unbatched(self, batch_id: UUID | str, entry: TimeEntry) -> None:
        owner = self._session.execute(
            select(BillingBatchEntryModel.batch_id).where(
                BillingBatchEntryModel.time_entry_id == entry.id
            )
        ).scalar_one_or_none()
        if owner is not None and str(owner) != str(batch_id):
            raise DuplicateBatchEntryError(str(owner), str(entry.id))

    def _require_customer(
        self,
        batch_id: UUID | str,
        customer_id: UUID | str,
        entry: TimeEntry,
    ) -> None:
        if entry.customer_id is not None and str(entry.customer_id) != str(customer_id):
            raise EntryCustomerMismatchError(
                str(batch_id), str(entry.id), str(entry.customer_id)
            )

    def _agreements_for(self, entries: Iterable[TimeEntry]) -> dict[str, Agreement]:
        ids = {str(e.agreement_id) for e in entries if e.agreement_id is not None}
        if not ids:
            return {}
        rows = self._session.execute(
            select(AgreementModel).where(AgreementModel.id.in_(ids))
        ).scalars()
        return {str(row.id): row.to_dto() for row in rows}

    def _charged_fixed_fees(
        self, batch: BillingBatch, agreements: Mapping[str, Agreement]
    ) -> set[str]:
        """
        Fixed agreements whose fee another batch already froze for the
        agreement's own period.

        The window comes from each agreement's cadence, so a yearly fee
        charged in a January batch also covers every later month of that year.
        """
        if not self._policy.charge_fixed_fee_once_per_period:
            return set()
        month_start = date(batch.period_year, batch.period_month, 1)
        windows = {
            agreement_id: (
                current_period_start(agreement, month_start),
                current_period_end(agreement, month_start),
            )
            for agreement_id, agreement in agreements.items()
            if agreement.type == AgreementType.FIXED
        }
        if not windows:
            return set()

        rows = self._session.execute(
            select(
                BillingBatchModel.period_year,
                BillingBatchModel.period_month,
                BillingBatchModel.totals,
            ).where(
                BillingBatchModel.customer_id == batch.customer_id,
                BillingBatchModel.status.in_(_CHARGING_STATUSES),
                BillingBatchModel.id != batch.batch_id,
            )
        ).all()
        charged: set[str] = set()
        for year, month, totals in rows:
            if not totals:
                continue
            other_month = date(year, month, 1)
            for agreement_id in totals.get("fixed_fee_agreement_ids", ()):
                window = windows.get(str(agreement_id))
                if window is not None and window[0] <= other_month <= window[1]:
                    charged.add(str(agreement_id))
        return charged

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_batch(self, batch_id: UUID | str) -> BillingBatch:
        return self._snapshot(self._batch_model(batch_id))

    def list_batches(
        self,
        customer_id: UUID | str | None = None,
        period_year: int | None = None,
        period_month: int | None = None,
        status: BatchStatus | None = None,
    ) -> list[BillingBatch]:
        stmt = select(BillingBatchModel)
        if customer_id is not None:
            stmt = stmt.where(BillingBatchModel.customer_id == customer_id)
        if period_year is not None:
            stmt = stmt.where(BillingBatchModel.period_year == period_year)
        if period_month is not None:
            stmt = stmt.where(BillingBatchModel.period_month == period_month)
        if status is not None:
            stmt = stmt.where(BillingBatchModel.status == BatchStatus(status).value)
        models = self._session.execute(
            stmt.order_by(BillingBatchModel.batch_number)
        ).scalars().all()
        return [self._snapshot(m) for m in models]

    def preview_totals(self, batch_id: UUID | str) -> BatchTotals:
        """Live totals for a draft, frozen totals once submitted."""
        batch = self.get_batch(batch_id)
        agreements = self._agreements_for(batch.entries)
        return workflow.preview_totals(
            batch,
            agreements,
            currency=self._policy.currency,
            charged_fixed_fee_agreement_ids=self._charged_fixed_fees(batch, agreements),
        )

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_batch(
        self,
        *,
        customer_id: UUID | str,
        period_year: int,
        period_month: int,
        actor_id: UUID,
        entry_ids: Iterable[UUID | str] = (),
        notes: str | None = None,
    ) -> BillingBatch:
        """Allocate a batch number and persist a new draft batch.

        Raises:
            TimeEntryNotFoundError: If an entry id does not exist.
            DuplicateBatchEntryError: If an entry already belongs to a batch.
            EntryCustomerMismatchError: If an entry belongs to another customer.
            EntryAlreadyExportedError: If an entry is already exported.
        """
        entries = [self._time_entry(entry_id).to_dto() for entry_id in entry_ids]

        batch_id = uuid4()
        for entry in entries:
            self._require_customer(batch_id, customer_id, entry)
            self._require_unbatched(batch_id, entry)

        seq = self._sequence.next_value(
            SequenceService.batch_sequence_name(period_year, period_month)
        )
        now = self._clock.now()
        batch = workflow.create_batch(
            customer_id=customer_id,
            period_year=period_year,
            period_month=period_month,
            sequence=seq,
            prefix=self._policy.batch_number_prefix,
            batch_id=batch_id,
            created_at=now,
            notes=notes,
            entries=entries,
        )

        model = BillingBatchModel.from_dto(batch, created_by_id=actor_id)
        model.created_at = now
        self._session.add(model)
        self._session.flush()
        for position, entry in enumerate(batch.entries, start=1):
            self._session.add(
                BillingBatchEntryModel(
                    batch_id=batch.batch_id,
                    time_entry_id=entry.id,
                    position=position,
                    created_by_id=actor_id,
                )
            )
        self._session.flush()

        logger.info(
            "batch_persisted",
            extra={
                "batch_id": str(batch.batch_id),
                "batch_number": batch.batch_number,
                "period": batch.period_code,
                "sequence": seq,
            },
        )
        return batch

    # -------------------------------------------------------------------------
    # Apply + persist
    # -------------------------------------------------------------------------

    def _apply(
        self,
        batch_id: UUID | str,
        actor_id: UUID,
        change: Callable[[BillingBatch], BillingBatch],
    ) -> BillingBatch:
        with LogContext.bind(batch_id=str(batch_id), actor_id=str(actor_id)):
            model = self._batch_model(batch_id, lock=True)
            before = self._snapshot(model)
            after = change(before)
            if after is before:
                return before
            self._persist(before, after, actor_id)
            return after

    def _persist(self, before: BillingBatch, after: BillingBatch, actor_id: UUID) -> None:
        """Compare-and-swap the header, then sync membership and export flags."""
        result = self._session.execute(
            update(BillingBatchModel)
            .where(
                BillingBatchModel.id == before.batch_id,
                BillingBatchModel.version == before.version,
            )
            .values(
                status=after.status.value,
                version=after.version,
                totals=after.totals.to_dict() if after.totals else None,
                exported_at=after.exported_at,
                exported_by=after.exported_by,
                external_invoice_number=after.external_invoice_number,
                updated_at=self._clock.now(),
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            actual = self._session.execute(
                select(BillingBatchModel.version).where(
                    BillingBatchModel.id == before.batch_id
                )
            ).scalar_one_or_none()
            logger.warning(
                "batch_transition_conflict",
                extra={
                    "batch_id": str(before.batch_id),
                    "expected_version": before.version,
                    "actual_version": actual,
                },
            )
            raise ConcurrentTransitionError(str(before.batch_id), before.version, actual)

        self._sync_members(before, after, actor_id)

        if after.status == BatchStatus.EXPORTED and before.status != BatchStatus.EXPORTED:
            self._mark_entries_exported(after, actor_id)

        self._session.flush()

    def _sync_members(self, before: BillingBatch, after: BillingBatch, actor_id: UUID) -> None:
        removed = set(before.entry_ids) - set(after.entry_ids)
        added = [e for e in after.entries if before.find_entry(e.id) is None]
        if not removed and not added:
            return

        if removed:
            rows = self._session.execute(
                select(BillingBatchEntryModel).where(
                    BillingBatchEntryModel.batch_id == after.batch_id,
                    BillingBatchEntryModel.time_entry_id.in_(removed),
                )
            ).scalars()
            for row in rows:
                self._session.delete(row)
            self._session.flush()

        if added:
            last = self._session.execute(
                select(func.coalesce(func.max(BillingBatchEntryModel.position), 0)).where(
                    BillingBatchEntryModel.batch_id == after.batch_id
                )
            ).scalar_one()
            for offset, entry in enumerate(added, start=1):
                self._session.add(
                    BillingBatchEntryModel(
                        batch_id=after.batch_id,
                        time_entry_id=entry.id,
                        position=last + offset,
                        created_by_id=actor_id,
                    )
                )

    def _mark_entries_exported(self, batch: BillingBatch, actor_id: UUID) -> None:
        rows = self._session.execute(
            select(TimeEntryModel).where(TimeEntryModel.id.in_(batch.entry_ids))
        ).scalars()
        count = 0
        for row in rows:
            row.is_exported = True
            row.export_batch_id = batch.batch_id
            row.updated_by_id = actor_id
            count += 1
        logger.info(
            "batch_entries_exported",
            extra={
                "batch_id": str(batch.batch_id),
                "batch_number": batch.batch_number,
                "entry_count": count,
                "external_invoice_number": batch.external_invoice_number,
            },
        )

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    def add_entry(
        self,
        batch_id: UUID | str,
        entry_id: UUID | str,
        *,
        actor_id: UUID,
        expected_version: int | None = None,
    ) -> BillingBatch:
        entry = self._time_entry(entry_id).to_dto()

        def change(batch: BillingBatch) -> BillingBatch:
            self._require_customer(batch.batch_id, batch.customer_id, entry)
            self._require_unbatched(batch.batch_id, entry)
            return workflow.add_entry(batch, entry, expected_version=expected_version)

        return self._apply(batch_id, actor_id, change)

    def remove_entry(
        self,
        batch_id: UUID | str,
        entry_id: UUID | str,
        *,
        actor_id: UUID,
        expected_version: int | None = None,
    ) -> BillingBatch:
        return self._apply(
            batch_id,
            actor_id,
            lambda batch: workflow.remove_entry(
                batch, entry_id, expected_version=expected_version
            ),
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def submit_for_review(
        self,
        batch_id: UUID | str,
        *,
        actor_id: UUID,
        expected_version: int | None = None,
    ) -> BillingBatch:
        """draft -> review.  Totals are computed here and frozen."""

        def change(batch: BillingBatch) -> BillingBatch:
            agreements = self._agreements_for(batch.entries)
            return workflow.submit_for_review(
                batch,
                agreements,
                currency=self._policy.currency,
                charged_fixed_fee_agreement_ids=self._charged_fixed_fees(batch, agreements),
                expected_version=expected_version,
            )

        return self._apply(batch_id, actor_id, change)

    def return_to_draft(
        self,
        batch_id: UUID | str,
        *,
        actor_id: UUID,
        expected_version: int | None = None,
    ) -> BillingBatch:
        return self._apply(
            batch_id,
            actor_id,
            lambda batch: workflow.return_to_draft(batch, expected_version=expected_version),
        )

    def record_export(
        self,
        batch_id: UUID | str,
        outcome: ExportOutcome,
        *,
        actor_id: UUID,
        expected_version: int | None = None,
    ) -> BillingBatch:
        """review -> exported for a successful export.

        Raises:
            BatchExportFailedError: If ``outcome`` reports failure.  Nothing
                is written and the batch stays in review.
        """
        return self._apply(
            batch_id,
            actor_id,
            lambda batch: workflow.record_export(
                batch,
                outcome,
                at=self._clock.now(),
                actor_id=actor_id,
                expected_version=expected_version,
            ),
        )

    def lock(
        self,
        batch_id: UUID | str,
        *,
        actor_id: UUID,
        expected_version: int | None = None,
    ) -> BillingBatch:
        return self._apply(
            batch_id,
            actor_id,
            lambda batch: workflow.lock_batch(batch, expected_version=expected_version),
        )

    def transition(
        self,
        batch_id: UUID | str,
        target: BatchStatus | str,
        *,
        actor_id: UUID,
        outcome: ExportOutcome | None = None,
        expected_version: int | None = None,
    ) -> BillingBatch:
        """Move a batch to ``target`` through whichever transition leads there."""

        def change(batch: BillingBatch) -> BillingBatch:
            agreements = self._agreements_for(batch.entries)
            return workflow.transition_batch(
                batch,
                target,
                agreements=agreements,
                currency=self._policy.currency,
                outcome=outcome,
                at=self._clock.now(),
                actor_id=actor_id,
                charged_fixed_fee_agreement_ids=self._charged_fixed_fees(batch, agreements),
                expected_version=expected_version,
            )

        return self._apply(batch_id, actor_id, change)
