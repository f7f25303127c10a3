"""
Tests for TimebankService against SQLite.

Status comes from the SQL aggregate when it is complete and from raw
entries otherwise; log_time splits work that crosses the end of the pool.
"""

from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.domain.agreements import AgreementStatus, BillingType
from billing_kernel.exceptions import (
    AgreementNotFoundError,
    InvalidAgreementTypeError,
    InvalidHoursError,
)
from billing_kernel.services.timebank_service import TimebankService


@pytest.fixture
def service(db_session, clock, policy):
    return TimebankService(db_session, clock=clock, policy=policy)


@pytest.fixture
def timebank(store_agreement, timebank_agreement):
    return store_agreement(timebank_agreement)


def _fallback_reasons(records):
    return [r["reason"] for r in records if r["message"] == "timebank_view_fallback"]


# =============================================================================
# Status
# =============================================================================


class TestGetStatus:
    def test_aggregate_path(self, service, timebank, make_entry, store_entry, captured_logs):
        store_entry(make_entry(timebank, 10))
        store_entry(make_entry(timebank, 15, date(2026, 3, 14)))
        store_entry(make_entry(timebank, 50, date(2026, 2, 27)))
        store_entry(make_entry(timebank, 4, billing_type=BillingType.OVERTIME))

        status = service.get_status(timebank.id)

        assert status.hours_used == Decimal("25")
        assert status.hours_remaining == Decimal("15")
        assert status.percent_used == Decimal("62.5")
        assert _fallback_reasons(captured_logs()) == []

    def test_minute_only_rows_use_raw_entries(
        self, service, timebank, make_entry, store_entry, captured_logs
    ):
        store_entry(make_entry(timebank, 2))
        store_entry(make_entry(timebank, None, minutes=90))

        status = service.get_status(timebank.id)

        assert status.hours_used == Decimal("3.5")
        assert _fallback_reasons(captured_logs()) == ["view_incomplete"]

    def test_pool_exceeded(self, service, timebank, make_entry, store_entry):
        store_entry(make_entry(timebank, 55))
        status = service.get_status(timebank.id)
        assert status.overtime_hours == Decimal("15")
        assert status.is_overtime is True

    def test_explicit_reference_date(self, service, timebank, make_entry, store_entry):
        store_entry(make_entry(timebank, 8, date(2026, 2, 3)))
        assert service.get_status(timebank.id, date(2026, 2, 20)).hours_used == Decimal("8")
        assert service.get_status(timebank.id).hours_used == Decimal("0")

    def test_unknown_agreement(self, service):
        with pytest.raises(AgreementNotFoundError):
            service.get_status(uuid4())

    def test_non_timebank_agreement(self, service, store_agreement, hourly_agreement):
        store_agreement(hourly_agreement)
        with pytest.raises(InvalidAgreementTypeError):
            service.get_status(hourly_agreement.id)

    def test_list_entries_by_type(self, service, timebank, make_entry, store_entry):
        pool = store_entry(make_entry(timebank, 1))
        store_entry(make_entry(timebank, 2, billing_type=BillingType.OVERTIME))
        entries = service.list_entries(
            timebank.id, date(2026, 3, 1), date(2026, 3, 31), BillingType.TIMEBANK
        )
        assert [e.id for e in entries] == [pool.id]


# =============================================================================
# Logging work
# =============================================================================


class TestLogTime:
    def test_within_pool(self, service, timebank, actor_id):
        entries = service.log_time(agreement_id=timebank.id, hours="6", actor_id=actor_id)

        assert len(entries) == 1
        assert entries[0].billing_type == BillingType.TIMEBANK
        assert entries[0].is_billable is True
        assert entries[0].hourly_rate is None
        assert entries[0].date == date(2026, 3, 15)
        assert service.get_status(timebank.id).hours_used == Decimal("6")

    def test_crossing_pool_splits(self, service, timebank, make_entry, store_entry, actor_id,
                                  captured_logs):
        store_entry(make_entry(timebank, 36))

        entries = service.log_time(agreement_id=timebank.id, hours=Decimal("10"), actor_id=actor_id)

        assert [(e.billing_type, e.hours) for e in entries] == [
            (BillingType.TIMEBANK, Decimal("4")),
            (BillingType.OVERTIME, Decimal("6")),
        ]
        assert entries[1].hourly_rate == Decimal("1100")

        status = service.get_status(timebank.id)
        assert status.hours_used == Decimal("40")
        assert status.hours_remaining == Decimal("0")

        logged = [r for r in captured_logs() if r["message"] == "time_logged"][-1]
        assert logged["entry_count"] == 2
        assert logged["agreement_id"] == str(timebank.id)

    def test_exhausted_pool_is_overtime(self, service, timebank, make_entry, store_entry, actor_id):
        store_entry(make_entry(timebank, 45))
        entries = service.log_time(agreement_id=timebank.id, hours=3, actor_id=actor_id)
        assert [e.billing_type for e in entries] == [BillingType.OVERTIME]

    def test_sequential_logs_see_previous_balance(self, service, timebank, actor_id):
        service.log_time(agreement_id=timebank.id, hours=30, actor_id=actor_id)
        second = service.log_time(agreement_id=timebank.id, hours=15, actor_id=actor_id)
        assert [e.hours for e in second] == [Decimal("10"), Decimal("5")]

    def test_internal_work_not_billable(self, service, timebank, actor_id):
        entries = service.log_time(
            agreement_id=timebank.id, hours=2, actor_id=actor_id, is_internal=True
        )
        assert entries[0].billing_type == BillingType.INTERNAL
        assert entries[0].is_billable is False
        assert service.get_status(timebank.id).hours_used == Decimal("0")

    def test_hourly_evening(self, service, store_agreement, hourly_agreement, actor_id):
        store_agreement(hourly_agreement)
        entries = service.log_time(
            agreement_id=hourly_agreement.id, hours=2, actor_id=actor_id, is_evening=True
        )
        assert entries[0].billing_type == BillingType.HOURLY
        assert entries[0].hourly_rate == Decimal("1500")
        assert entries[0].is_evening is True

    def test_negative_hours_rejected(self, service, timebank, actor_id):
        with pytest.raises(InvalidHoursError):
            service.log_time(agreement_id=timebank.id, hours="-1", actor_id=actor_id)

    def test_policy_required(self, db_session, clock, timebank, actor_id):
        service = TimebankService(db_session, clock=clock)
        with pytest.raises(ValueError):
            service.log_time(agreement_id=timebank.id, hours=1, actor_id=actor_id)


# =============================================================================
# Indexation
# =============================================================================


class TestIndexation:
    @pytest.fixture
    def scheduled(self, store_agreement, hourly_agreement):
        today = date(2026, 3, 15)

        def _store(days, status=AgreementStatus.ACTIVE):
            return store_agreement(
                replace(
                    hourly_agreement,
                    id=uuid4(),
                    next_indexation=today + timedelta(days=days),
                    status=status,
                )
            )

        return _store

    def test_upcoming_uses_policy_window(self, service, scheduled):
        soon = scheduled(10)
        edge = scheduled(30)
        scheduled(31)
        scheduled(-1)
        scheduled(5, AgreementStatus.TERMINATED)

        assert [a.id for a in service.upcoming_indexations()] == [soon.id, edge.id]

    def test_explicit_window(self, service, scheduled):
        today = scheduled(0)
        scheduled(8)
        assert [a.id for a in service.upcoming_indexations(window_days=7)] == [today.id]

    def test_overdue(self, service, scheduled, store_agreement, timebank_agreement):
        late = scheduled(-3)
        scheduled(0)
        store_agreement(timebank_agreement)
        assert [a.id for a in service.overdue_indexations()] == [late.id]

    def test_window_required_without_policy(self, db_session, clock):
        with pytest.raises(ValueError):
            TimebankService(db_session, clock=clock).upcoming_indexations()
