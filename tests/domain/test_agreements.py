"""
Tests for the Agreement and TimeEntry value objects.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.domain.agreements import (
    Agreement,
    AgreementPeriod,
    AgreementStatus,
    AgreementType,
    BillingType,
    TimeEntry,
)
from billing_kernel.exceptions import (
    AgreementValidationError,
    EntryAlreadyExportedError,
    InvalidHoursError,
)


def _row(**overrides):
    row = {
        "id": "ag-1",
        "type": "timebank",
        "customer_id": "cust-1",
        "period": "monthly",
        "included_hours": "40",
        "overtime_rate": 1100,
    }
    row.update(overrides)
    return row


class TestAgreementFromRow:
    def test_coerces_store_values(self):
        agreement = Agreement.from_row(
            _row(next_indexation="2026-04-01T00:00:00", valid_from=datetime(2025, 1, 1, 9, 30))
        )
        assert agreement.type == AgreementType.TIMEBANK
        assert agreement.period == AgreementPeriod.MONTHLY
        assert agreement.included_hours == Decimal("40")
        assert agreement.overtime_rate == Decimal("1100")
        assert agreement.next_indexation == date(2026, 4, 1)
        assert agreement.valid_from == date(2025, 1, 1)
        assert agreement.status == AgreementStatus.ACTIVE

    def test_blank_dates_are_none(self):
        agreement = Agreement.from_row(_row(next_indexation="", valid_to=None))
        assert agreement.next_indexation is None
        assert agreement.valid_to is None

    def test_explicit_status(self):
        assert Agreement.from_row(_row(status="terminated")).status == AgreementStatus.TERMINATED

    def test_float_rate_goes_through_str(self):
        assert Agreement.from_row(_row(overtime_rate=1100.5)).overtime_rate == Decimal("1100.5")

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            Agreement.from_row(_row(type="retainer"))

    def test_validation_runs(self):
        with pytest.raises(AgreementValidationError) as exc_info:
            Agreement.from_row(_row(included_hours="0"))
        assert exc_info.value.field == "included_hours"


class TestAgreementValidate:
    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"included_hours": None}, "included_hours"),
            ({"included_hours": "-5"}, "included_hours"),
            ({"period": None}, "period"),
            ({"overtime_rate": None}, "overtime_rate"),
            ({"overtime_rate": "-1"}, "overtime_rate"),
            ({"valid_from": "2026-02-01", "valid_to": "2026-01-31"}, "valid_to"),
        ],
    )
    def test_timebank_rules(self, overrides, field):
        with pytest.raises(AgreementValidationError) as exc_info:
            Agreement(**_row(**overrides)).validate()
        assert exc_info.value.field == field
        assert exc_info.value.agreement_id == "ag-1"

    def test_fixed_requires_amount_and_period(self):
        with pytest.raises(AgreementValidationError) as exc_info:
            Agreement(id="f", type=AgreementType.FIXED, period="monthly").validate()
        assert exc_info.value.field == "fixed_amount"
        with pytest.raises(AgreementValidationError) as exc_info:
            Agreement(id="f", type=AgreementType.FIXED, fixed_amount=5000).validate()
        assert exc_info.value.field == "period"

    def test_hourly_needs_nothing_extra(self):
        Agreement(id="h", type=AgreementType.HOURLY).validate()

    def test_negative_hourly_rate(self):
        with pytest.raises(AgreementValidationError):
            Agreement(id="h", type=AgreementType.HOURLY, hourly_rate=-1).validate()

    def test_construction_does_not_validate(self):
        agreement = Agreement(id="x", type=AgreementType.TIMEBANK)
        assert agreement.included_hours is None


class TestAgreementValidity:
    @pytest.fixture
    def bounded(self):
        return Agreement(
            id="b",
            type=AgreementType.HOURLY,
            valid_from=date(2026, 1, 1),
            valid_to=date(2026, 12, 31),
        )

    @pytest.mark.parametrize(
        "day,expected",
        [
            (date(2025, 12, 31), False),
            (date(2026, 1, 1), True),
            (date(2026, 6, 15), True),
            (date(2026, 12, 31), True),
            (date(2027, 1, 1), False),
        ],
    )
    def test_window_inclusive(self, bounded, day, expected):
        assert bounded.is_valid_on(day) is expected

    def test_open_ended(self):
        agreement = Agreement(id="o", type=AgreementType.HOURLY, valid_from=date(2026, 1, 1))
        assert agreement.is_valid_on(date(2099, 1, 1))
        assert not agreement.is_valid_on(date(2025, 6, 1))


class TestTimeEntry:
    def test_hours_win_over_minutes(self):
        entry = TimeEntry(id=1, date=date(2026, 3, 1), billing_type="hourly", hours="2", minutes=30)
        assert entry.effective_hours == Decimal("2")

    def test_minutes_convert(self):
        entry = TimeEntry(id=1, date=date(2026, 3, 1), billing_type="hourly", minutes=90)
        assert entry.effective_hours == Decimal("1.5")

    def test_sparse_entry_is_zero(self):
        entry = TimeEntry(id=1, date=date(2026, 3, 1), billing_type="timebank")
        assert entry.effective_hours == Decimal("0")

    def test_from_row(self):
        entry = TimeEntry.from_row(
            {
                "id": "e-1",
                "date": "2026-03-02",
                "billing_type": "overtime",
                "hours": Decimal("1.25"),
                "is_exported": 0,
                "is_evening": 1,
            }
        )
        assert entry.date == date(2026, 3, 2)
        assert entry.billing_type == BillingType.OVERTIME
        assert entry.is_billable is True
        assert entry.is_exported is False
        assert entry.is_evening is True

    def test_non_numeric_hours_rejected(self):
        with pytest.raises(InvalidHoursError):
            TimeEntry(id=1, date=date(2026, 3, 1), billing_type="hourly", hours="abc")

    def test_with_changes(self):
        entry = TimeEntry(id=1, date=date(2026, 3, 1), billing_type="timebank", hours="1")
        changed = entry.with_changes(billing_type=BillingType.OVERTIME)
        assert changed.billing_type == BillingType.OVERTIME
        assert entry.billing_type == BillingType.TIMEBANK

    def test_exported_entry_frozen(self):
        batch_id = uuid4()
        entry = TimeEntry(id="e-9", date=date(2026, 3, 1), billing_type="hourly", hours="1")
        exported = entry.mark_exported(batch_id)
        assert exported.is_exported
        assert exported.export_batch_id == batch_id
        with pytest.raises(EntryAlreadyExportedError) as exc_info:
            exported.with_changes(hours=Decimal("2"))
        assert exc_info.value.entry_id == "e-9"
