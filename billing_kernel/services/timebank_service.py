"""
TimebankService -- persistence-side timebank status and time logging.

Responsibility:
    Serves timebank status for stored agreements and logs new work against
    them.  Logging is the one read-modify-write sequence on a shared pool:
    read the remaining balance, split the new hours, persist the classified
    entries.  It runs under a row lock on the agreement.

Architecture position:
    Kernel > Services -- imperative shell.  Loads rows, hands plain values
    to the pure engines in ``billing_engines`` and persists what they return.

Invariants enforced:
    - Two ``log_time`` calls on the same agreement never both observe the
      pre-split balance: the agreement row is locked with
      ``SELECT ... FOR UPDATE`` before the balance is read.
    - Status is served from an aggregate query when it can represent the
      period exactly, and recomputed from raw entries otherwise.
    - Never commits; the caller owns the transaction.

Failure modes:
    - AgreementNotFoundError: unknown agreement id.
    - InvalidAgreementTypeError: status requested for a non-timebank agreement.
    - AgreementValidationError / InvalidHoursError: propagated from engines.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from billing_kernel.domain.agreements import (
    Agreement,
    AgreementStatus,
    AgreementType,
    BillingType,
    TimeEntry,
)
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.values import ZERO
from billing_kernel.exceptions import AgreementNotFoundError
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.agreement import AgreementModel
from billing_kernel.models.time_entry import TimeEntryModel
from billing_config.schema import BillingPolicy
from billing_engines.periods import (
    current_period_end,
    current_period_start,
    is_indexation_overdue,
    is_indexation_warning_needed,
)
from billing_engines.split import BillingResult, classify_time
from billing_engines.timebank import TimebankStatus, TimebankView, resolve_timebank_status

logger = get_logger("services.timebank")

_NOT_BILLABLE = (BillingType.INTERNAL, BillingType.FIXED)


class TimebankService:
    """
    Timebank status and time logging for stored agreements.

    Usage:
        service = TimebankService(session, clock, policy)
        status = service.get_status(agreement_id)
        entries = service.log_time(agreement_id=..., hours=Decimal("3"), actor_id=...)
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: BillingPolicy | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _agreement_model(self, agreement_id: UUID | str, *, lock: bool = False) -> AgreementModel:
        stmt = select(AgreementModel).where(AgreementModel.id == agreement_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self._session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise AgreementNotFoundError(str(agreement_id))
        return model

    def get_agreement(self, agreement_id: UUID | str) -> Agreement:
        return self._agreement_model(agreement_id).to_dto()

    def list_entries(
        self,
        agreement_id: UUID | str,
        start: date,
        end: date,
        billing_type: BillingType | None = None,
    ) -> list[TimeEntry]:
        """Entries logged against the agreement between ``start`` and ``end`` inclusive."""
        conditions = [
            TimeEntryModel.agreement_id == agreement_id,
            TimeEntryModel.entry_date >= start,
            TimeEntryModel.entry_date <= end,
        ]
        if billing_type is not None:
            conditions.append(TimeEntryModel.billing_type == billing_type.value)
        rows = self._session.execute(
            select(TimeEntryModel)
            .where(and_(*conditions))
            .order_by(TimeEntryModel.entry_date, TimeEntryModel.created_at)
        ).scalars()
        return [row.to_dto() for row in rows]

    def _aggregate_view(
        self,
        agreement: Agreement,
        period_start: date,
        period_end: date,
    ) -> TimebankView:
        """
        Server-side sum of the period's timebank hours.

        Entries stored only as minutes cannot be summed exactly in SQL, so
        their presence leaves ``hours_used_this_period`` unset and the
        caller recomputes from raw entries.
        """
        in_period = and_(
            TimeEntryModel.agreement_id == agreement.id,
            TimeEntryModel.billing_type == BillingType.TIMEBANK.value,
            TimeEntryModel.entry_date >= period_start,
            TimeEntryModel.entry_date <= period_end,
        )
        hours_sum, minute_only = self._session.execute(
            select(
                func.coalesce(func.sum(TimeEntryModel.hours), 0),
                func.count(TimeEntryModel.id).filter(
                    and_(TimeEntryModel.hours.is_(None), TimeEntryModel.minutes.is_not(None))
                ),
            ).where(in_period)
        ).one()

        hours_used = None if minute_only else Decimal(str(hours_sum))
        return TimebankView(
            agreement_id=agreement.id,
            included_hours=agreement.included_hours,
            hours_used_this_period=hours_used,
            hours_remaining=(
                max(ZERO, agreement.included_hours - hours_used)
                if hours_used is not None
                else None
            ),
            period_start=period_start,
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _status_for(self, agreement: Agreement, reference_date: date) -> TimebankStatus:
        period_start = current_period_start(agreement, reference_date)
        period_end = current_period_end(agreement, reference_date)
        view = self._aggregate_view(agreement, period_start, period_end)
        return resolve_timebank_status(
            agreement,
            view,
            lambda: self.list_entries(
                agreement.id, period_start, period_end, BillingType.TIMEBANK
            ),
            reference_date,
        )

    def get_status(
        self,
        agreement_id: UUID | str,
        reference_date: date | None = None,
    ) -> TimebankStatus:
        """Timebank status for the period containing ``reference_date`` (default today)."""
        agreement = self.get_agreement(agreement_id)
        ref = reference_date or self._clock.today()
        return self._status_for(agreement, ref)

    # ------------------------------------------------------------------
    # Logging work
    # ------------------------------------------------------------------

    def log_time(
        self,
        *,
        agreement_id: UUID | str,
        hours: Decimal | int | str,
        actor_id: UUID,
        entry_date: date | None = None,
        is_extra_billable: bool = False,
        is_evening: bool = False,
        is_internal: bool = False,
        description: str | None = None,
    ) -> tuple[TimeEntry, ...]:
        """
        Classify and persist new work against an agreement.

        The agreement row stays locked until the caller's transaction ends,
        so concurrent callers queue behind each other and each sees the
        balance left by the previous one.

        Returns:
            The one or two persisted entries (two when the work crosses the
            end of the timebank pool).
        """
        day = entry_date or self._clock.today()
        with LogContext.bind(agreement_id=str(agreement_id), actor_id=str(actor_id)):
            model = self._agreement_model(agreement_id, lock=True)
            agreement = model.to_dto()

            remaining = None
            if agreement.type == AgreementType.TIMEBANK and not (
                is_extra_billable or is_internal
            ):
                remaining = self._status_for(agreement, day).hours_remaining

            result: BillingResult = classify_time(
                agreement,
                hours,
                remaining,
                is_extra_billable=is_extra_billable,
                is_evening=is_evening,
                is_internal=is_internal,
                currency=self._currency,
            )

            created: list[TimeEntry] = []
            for line in result.lines:
                entry = TimeEntry(
                    id=uuid4(),
                    date=day,
                    billing_type=line.billing_type,
                    agreement_id=agreement.id,
                    customer_id=agreement.customer_id,
                    hours=line.hours,
                    is_billable=line.billing_type not in _NOT_BILLABLE,
                    is_evening=is_evening,
                    hourly_rate=line.hourly_rate if line.hourly_rate > ZERO else None,
                    description=description,
                )
                self._session.add(TimeEntryModel.from_dto(entry, created_by_id=actor_id))
                created.append(entry)
            self._session.flush()

            logger.info(
                "time_logged",
                extra={
                    "hours": str(result.hours),
                    "pool_balance_before": str(remaining) if remaining is not None else None,
                    "billing_types": [line.billing_type.value for line in result.lines],
                    "amount": str(result.total_amount.amount),
                    "entry_count": len(created),
                },
            )
            return tuple(created)

    @property
    def _currency(self) -> str:
        if self._policy is None:
            raise ValueError("A BillingPolicy is required to price logged time")
        return self._policy.currency

    # ------------------------------------------------------------------
    # Indexation
    # ------------------------------------------------------------------

    def _agreements_with_indexation(self) -> list[Agreement]:
        rows = self._session.execute(
            select(AgreementModel)
            .where(
                AgreementModel.status == AgreementStatus.ACTIVE.value,
                AgreementModel.next_indexation.is_not(None),
            )
            .order_by(AgreementModel.next_indexation)
        ).scalars()
        return [row.to_dto() for row in rows]

    def upcoming_indexations(
        self,
        window_days: int | None = None,
        reference_date: date | None = None,
    ) -> Sequence[Agreement]:
        """
        Active agreements whose indexation falls within ``window_days``.

        ``window_days`` defaults to the policy's ``indexation_warning_days``.
        """
        if window_days is None:
            if self._policy is None:
                raise ValueError("window_days or a BillingPolicy is required")
            window_days = self._policy.indexation_warning_days
        ref = reference_date or self._clock.today()
        return [
            a
            for a in self._agreements_with_indexation()
            if is_indexation_warning_needed(a, ref, window_days)
        ]

    def overdue_indexations(self, reference_date: date | None = None) -> Sequence[Agreement]:
        ref = reference_date or self._clock.today()
        return [
            a for a in self._agreements_with_indexation() if is_indexation_overdue(a, ref)
        ]
