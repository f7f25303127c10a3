"""
Pytest fixtures for the billing kernel test suite.

Provides:
- Structured logging configured once per session, plus log capture
- In-memory SQLite sessions with every billing table created
- Deterministic clock, billing policy and agreement/time entry factories
"""

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from billing_kernel.db.base import Base
from billing_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from billing_kernel.domain.agreements import (
    Agreement,
    AgreementPeriod,
    AgreementType,
    BillingType,
    TimeEntry,
)
from billing_kernel.domain.clock import DeterministicClock
from billing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from billing_kernel.models.agreement import AgreementModel
from billing_kernel.models.time_entry import TimeEntryModel
from billing_config.schema import BillingPolicy

# Registers the remaining tables on Base.metadata.
import billing_batch.models  # noqa: F401
import billing_kernel.services.sequence_service  # noqa: F401


# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture billing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            calculate_timebank_status(...)
            logs = captured_logs()
            assert any(r["message"] == "timebank_status_calculated" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("billing_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def clock():
    """Naive timestamps: SQLite drops tzinfo on round-trip."""
    return DeterministicClock(datetime(2026, 3, 15, 12, 0, 0))


@pytest.fixture
def policy():
    return BillingPolicy(config_id="test", version=1, currency="SEK")


@pytest.fixture
def customer_id():
    return uuid4()


@pytest.fixture
def timebank_agreement(customer_id):
    return Agreement(
        id=uuid4(),
        type=AgreementType.TIMEBANK,
        customer_id=customer_id,
        period=AgreementPeriod.MONTHLY,
        included_hours=Decimal("40"),
        hourly_rate=Decimal("950"),
        overtime_rate=Decimal("1100"),
    )


@pytest.fixture
def hourly_agreement(customer_id):
    return Agreement(
        id=uuid4(),
        type=AgreementType.HOURLY,
        customer_id=customer_id,
        hourly_rate=Decimal("1000"),
        hourly_rate_evening=Decimal("1500"),
    )


@pytest.fixture
def fixed_agreement(customer_id):
    return Agreement(
        id=uuid4(),
        type=AgreementType.FIXED,
        customer_id=customer_id,
        period=AgreementPeriod.MONTHLY,
        fixed_amount=Decimal("12000"),
        hourly_rate=Decimal("900"),
    )


def _make_entry(
    agreement: Agreement,
    hours,
    day: date = date(2026, 3, 10),
    billing_type: BillingType = BillingType.TIMEBANK,
    **kwargs,
) -> TimeEntry:
    """Build a TimeEntry against ``agreement``."""
    kwargs.setdefault(
        "is_billable", billing_type not in (BillingType.INTERNAL, BillingType.FIXED)
    )
    return TimeEntry(
        id=kwargs.pop("id", uuid4()),
        date=day,
        billing_type=billing_type,
        agreement_id=agreement.id,
        customer_id=agreement.customer_id,
        hours=None if hours is None else Decimal(str(hours)),
        **kwargs,
    )


@pytest.fixture
def make_entry():
    """Factory for TimeEntry objects: ``make_entry(agreement, hours, day, billing_type)``."""
    return _make_entry


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    register_immutability_listeners()
    session = session_factory()
    yield session
    session.rollback()
    session.close()
    unregister_immutability_listeners()


@pytest.fixture
def store_agreement(db_session, actor_id):
    """Persist an Agreement and return it."""

    def _store(agreement: Agreement) -> Agreement:
        db_session.add(AgreementModel.from_dto(agreement, created_by_id=actor_id))
        db_session.flush()
        return agreement

    return _store


@pytest.fixture
def store_entry(db_session, actor_id):
    """Persist a TimeEntry and return it."""

    def _store(entry: TimeEntry) -> TimeEntry:
        db_session.add(TimeEntryModel.from_dto(entry, created_by_id=actor_id))
        db_session.flush()
        return entry

    return _store
