"""
Tests for the exported time entry immutability listeners.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from billing_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from billing_kernel.domain.agreements import BillingType
from billing_kernel.exceptions import EntryAlreadyExportedError
from billing_kernel.models.time_entry import TimeEntryModel


@pytest.fixture
def entry_row(db_session, store_agreement, store_entry, hourly_agreement, make_entry):
    store_agreement(hourly_agreement)
    entry = store_entry(make_entry(hourly_agreement, 2, billing_type=BillingType.HOURLY))
    return db_session.get(TimeEntryModel, entry.id)


def _export(db_session, row):
    row.is_exported = True
    row.export_batch_id = uuid4()
    db_session.flush()


class TestTimeEntryImmutability:
    def test_unexported_entry_is_editable(self, db_session, entry_row):
        entry_row.hours = Decimal("3")
        db_session.flush()
        assert db_session.get(TimeEntryModel, entry_row.id).hours == Decimal("3")

    def test_export_itself_is_allowed(self, db_session, entry_row):
        _export(db_session, entry_row)
        assert entry_row.is_exported is True

    @pytest.mark.parametrize(
        "field,value",
        [
            ("hours", Decimal("5")),
            ("billing_type", BillingType.OVERTIME.value),
            ("is_billable", False),
            ("hourly_rate", Decimal("1")),
        ],
    )
    def test_exported_entry_rejects_changes(self, db_session, entry_row, field, value, captured_logs):
        _export(db_session, entry_row)
        setattr(entry_row, field, value)
        with pytest.raises(EntryAlreadyExportedError):
            db_session.flush()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["field"] == field

    def test_unexport_rejected(self, db_session, entry_row):
        _export(db_session, entry_row)
        entry_row.is_exported = False
        with pytest.raises(EntryAlreadyExportedError):
            db_session.flush()

    def test_audit_fields_allowed(self, db_session, entry_row, actor_id):
        _export(db_session, entry_row)
        entry_row.updated_by_id = actor_id
        db_session.flush()

    def test_delete_rejected(self, db_session, entry_row):
        _export(db_session, entry_row)
        db_session.delete(entry_row)
        with pytest.raises(EntryAlreadyExportedError):
            db_session.flush()

    def test_unexported_delete_allowed(self, db_session, entry_row):
        db_session.delete(entry_row)
        db_session.flush()
        assert db_session.get(TimeEntryModel, entry_row.id) is None

    def test_unregistered_listeners_allow_changes(self, db_session, entry_row):
        _export(db_session, entry_row)
        unregister_immutability_listeners()
        try:
            entry_row.hours = Decimal("9")
            db_session.flush()
        finally:
            register_immutability_listeners()
