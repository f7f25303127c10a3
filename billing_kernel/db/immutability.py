"""
ORM-level immutability enforcement for exported time entries.

Exported work has been invoiced.  Changing its hours or classification
afterwards would make the stored record disagree with the invoice, so
SQLAlchemy listeners intercept such changes before any SQL is sent:

    session.flush()
         |
         v
    [before_update] --> _check_time_entry_immutability() --> EntryAlreadyExportedError
         |
    [before_delete] --> _check_time_entry_delete() --------> EntryAlreadyExportedError
         |
         v
    SQL sent to database (only if checks pass)

The export itself (``is_exported`` False -> True together with
``export_batch_id``) is allowed; it is what freezes the row.

Usage:
    from billing_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

    # tests that need to bypass
    unregister_immutability_listeners()
"""

from sqlalchemy import event, inspect

from billing_kernel.exceptions import EntryAlreadyExportedError
from billing_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _was_exported(target) -> bool:
    history = inspect(target).attrs.is_exported.history
    if history.deleted:
        return bool(history.deleted[0])
    if history.added:
        return False
    return bool(target.is_exported)


def _check_time_entry_immutability(mapper, connection, target):
    """Block every non-audit change to a row that was already exported."""
    if not _was_exported(target):
        return

    for attr in inspect(target).attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "TimeEntry",
                    "entity_id": str(target.id),
                    "operation": "UPDATE",
                    "field": attr.key,
                },
            )
            raise EntryAlreadyExportedError(str(target.id), f"modify {attr.key} of")


def _check_time_entry_delete(mapper, connection, target):
    if not target.is_exported:
        return
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "TimeEntry",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise EntryAlreadyExportedError(str(target.id), "delete")


def register_immutability_listeners() -> None:
    """Register the listeners.  Idempotent."""
    from billing_kernel.models.time_entry import TimeEntryModel

    for event_name, fn in (
        ("before_update", _check_time_entry_immutability),
        ("before_delete", _check_time_entry_delete),
    ):
        if not event.contains(TimeEntryModel, event_name, fn):
            event.listen(TimeEntryModel, event_name, fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners.  Tests only."""
    from billing_kernel.models.time_entry import TimeEntryModel

    for event_name, fn in (
        ("before_update", _check_time_entry_immutability),
        ("before_delete", _check_time_entry_delete),
    ):
        if event.contains(TimeEntryModel, event_name, fn):
            event.remove(TimeEntryModel, event_name, fn)
