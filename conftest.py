"""Shared pytest fixtures.

The environment is pointed at an in-memory database before any project
module is imported, because config/database read it at import time.
"""

import os
import tempfile
from datetime import date, datetime
from types import SimpleNamespace

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["TIMEZONE"] = "UTC"
os.environ["REQUIRES_SUBSCRIPTION"] = "false"
os.environ["RESCHEDULE_INTO_OUTBOX"] = "true"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="reminder-dispatch-logs-")

import pytest  # noqa: E402

import database  # noqa: E402
from clock import FixedClock  # noqa: E402
from database import (  # noqa: E402
    Account, Contact, FrequencyEnum, NatureEnum, Reminder, ReminderOutbox, ReminderRule, User,
)
from errors import TransportError  # noqa: E402
from transport import NotificationTransport  # noqa: E402


class RecordingTransport(NotificationTransport):
    """Keeps every (user_id, payload) it is asked to send."""

    def __init__(self):
        self.sent = []

    def send(self, user, payload):
        self.sent.append((user.id, payload))

    def sent_to(self, user_id):
        return [payload for uid, payload in self.sent if uid == user_id]


class FailingTransport(NotificationTransport):
    def __init__(self):
        self.attempts = 0

    def send(self, user, payload):
        self.attempts += 1
        raise TransportError("gateway unavailable")


class Factory:
    """Creates committed rows with sensible defaults."""

    def __init__(self, db):
        self.db = db

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        return obj

    def account(self, **overrides):
        values = dict(
            default_time_reminder_is_sent="07:00",
            has_access_to_paid_version_for_free=False,
            subscription_active=False,
        )
        values.update(overrides)
        return self._save(Account(**values))

    def contact(self, account, **overrides):
        values = dict(account_id=account.id, first_name="John", last_name="Doe")
        values.update(overrides)
        return self._save(Contact(**values))

    def user(self, account, **overrides):
        values = dict(account_id=account.id, first_name="Jane", last_name="Roe", email="jane@example.com")
        values.update(overrides)
        return self._save(User(**values))

    def reminder(self, account, contact, **overrides):
        values = dict(
            account_id=account.id,
            contact_id=contact.id,
            initial_date=date(2017, 1, 1),
            title="fake text saying nothing",
            frequency_type=FrequencyEnum.YEAR,
            frequency_number=1,
            inactive=False,
        )
        values.update(overrides)
        return self._save(Reminder(**values))

    def outbox(self, reminder, user, **overrides):
        values = dict(
            account_id=user.account_id,
            reminder_id=reminder.id,
            user_id=user.id,
            planned_date=date(2017, 1, 1),
            nature=NatureEnum.REMINDER,
        )
        values.update(overrides)
        return self._save(ReminderOutbox(**values))

    def rule(self, account, days, active=True):
        return self._save(ReminderRule(account_id=account.id, number_of_days_before=days, active=active))


@pytest.fixture
def db():
    database.Base.metadata.drop_all(bind=database.engine)
    database.Base.metadata.create_all(bind=database.engine)
    session = database.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def world(factory):
    """Account sending at 07:00 with one contact and one user."""
    account = factory.account()
    return SimpleNamespace(
        account=account,
        contact=factory.contact(account),
        user=factory.user(account),
    )


@pytest.fixture
def clock():
    return FixedClock(datetime(2017, 1, 1, 7, 0, 0))


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def failing_transport():
    return FailingTransport()
