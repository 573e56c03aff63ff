"""Tests for the outbox advancer (dispatcher.process_outbox_entry)."""

from datetime import date, datetime

import pytest
from sqlalchemy import select

import crud
from clock import FixedClock
from config import settings
from database import FrequencyEnum, NatureEnum, Reminder, ReminderOutbox, ReminderSent
from dispatcher import process_outbox_entry
from errors import ComposeError, OutboxEntryNotFound, TransportError
from schemas import ProcessOutcome


def _outbox_for(db, reminder_id):
    return db.execute(select(ReminderOutbox).where(ReminderOutbox.reminder_id == reminder_id)).scalars().all()


def _sent_rows(db):
    return db.execute(select(ReminderSent)).scalars().all()


def test_it_sends_a_reminder_to_a_user(db, factory, world, clock, transport):
    reminder = factory.reminder(world.account, world.contact)
    outbox = factory.outbox(reminder, world.user, nature=NatureEnum.REMINDER)

    result = process_outbox_entry(db, outbox.id, transport, clock=clock)

    assert result.sent
    payloads = transport.sent_to(world.user.id)
    assert len(payloads) == 1
    payload = payloads[0]
    assert payload.subject == "Reminder for John Doe"
    assert payload.greeting == "Hi Jane"
    assert "You wanted to be reminded of fake text saying nothing" in payload.intro_lines
    assert payload.nature == "reminder"


def test_it_sends_a_notification_to_a_user(db, factory, world, clock, transport):
    reminder = factory.reminder(world.account, world.contact)
    outbox = factory.outbox(reminder, world.user, nature=NatureEnum.NOTIFICATION)

    process_outbox_entry(db, outbox.id, transport, clock=clock)

    payload = transport.sent_to(world.user.id)[0]
    assert payload.subject == "Reminder for John Doe"
    assert payload.greeting == "Hi Jane"
    assert "In  days (on Jan 01, 2018), the following event will happen:" in payload.intro_lines
    assert "fake text saying nothing" in payload.intro_lines
    assert payload.nature == "notification"


def test_notification_uses_notice_in_days_when_planned_ahead(db, factory, world, clock, transport):
    reminder = factory.reminder(world.account, world.contact, initial_date=date(2017, 1, 8))
    outbox = factory.outbox(reminder, world.user, nature=NatureEnum.NOTIFICATION, notice_in_days=7)

    process_outbox_entry(db, outbox.id, transport, clock=clock)

    payload = transport.sent_to(world.user.id)[0]
    assert "In 7 days (on Jan 08, 2017), the following event will happen:" in payload.intro_lines


def test_advance_notice_leaves_the_one_time_reminder_active(db, factory, world, transport):
    factory.rule(world.account, 7)
    reminder = crud.create_reminder(db, {
        'account_id': world.account.id,
        'contact_id': world.contact.id,
        'initial_date': date(2017, 1, 20),
        'title': 'Dentist',
        'frequency_type': 'one_time',
    }, today=date(2017, 1, 1))
    notice = next(e for e in _outbox_for(db, reminder.id) if e.nature == NatureEnum.NOTIFICATION)
    assert notice.planned_date == date(2017, 1, 13)

    result = process_outbox_entry(db, notice.id, transport, clock=FixedClock(datetime(2017, 1, 13, 7, 0)))

    assert result.outcome == ProcessOutcome.NOTIFIED
    assert result.sent
    assert "In 7 days (on Jan 20, 2017), the following event will happen:" in result.payload.intro_lines
    assert db.get(Reminder, reminder.id).inactive is False
    assert [(e.planned_date, e.nature) for e in _outbox_for(db, reminder.id)] == [
        (date(2017, 1, 20), NatureEnum.REMINDER),
    ]
    assert len(_sent_rows(db)) == 1


def test_one_time_reminder_retires_on_its_own_entry_after_the_notice(db, factory, world, transport):
    factory.rule(world.account, 7)
    reminder = crud.create_reminder(db, {
        'account_id': world.account.id,
        'contact_id': world.contact.id,
        'initial_date': date(2017, 1, 20),
        'title': 'Dentist',
        'frequency_type': 'one_time',
    }, today=date(2017, 1, 1))
    entries = {e.nature: e.id for e in _outbox_for(db, reminder.id)}

    process_outbox_entry(db, entries[NatureEnum.NOTIFICATION], transport, clock=FixedClock(datetime(2017, 1, 13, 7, 0)))
    result = process_outbox_entry(db, entries[NatureEnum.REMINDER], transport, clock=FixedClock(datetime(2017, 1, 20, 7, 0)))

    assert result.outcome == ProcessOutcome.RETIRED
    assert db.get(Reminder, reminder.id).inactive is True
    assert _outbox_for(db, reminder.id) == []
    assert sorted(s.nature.value for s in _sent_rows(db)) == ["notification", "reminder"]


def test_recurring_notice_does_not_schedule_another_occurrence(db, factory, world, clock, transport):
    reminder = factory.reminder(world.account, world.contact)
    outbox = factory.outbox(reminder, world.user, nature=NatureEnum.NOTIFICATION, notice_in_days=7)

    result = process_outbox_entry(db, outbox.id, transport, clock=clock)

    assert result.outcome == ProcessOutcome.NOTIFIED
    assert _outbox_for(db, reminder.id) == []
    assert db.get(Reminder, reminder.id).inactive is False

@pytest.mark.parametrize("nature", [NatureEnum.REMINDER, NatureEnum.NOTIFICATION])
def test_it_doesnt_notify_a_user_on_the_free_plan(db, factory, clock, transport, monkeypatch, nature):
    monkeypatch.setattr(settings, "REQUIRES_SUBSCRIPTION", True)
    account = factory.account(has_access_to_paid_version_for_free=False)
    contact = factory.contact(account)
    user = factory.user(account)
    reminder = factory.reminder(account, contact)
    outbox = factory.outbox(reminder, user, nature=nature)

    result = process_outbox_entry(db, outbox.id, transport, clock=clock)

    assert result.outcome == ProcessOutcome.GATED
    assert not result.sent
    assert transport.sent == []
    assert _sent_rows(db) == []
    # Gated entries are left pending and the reminder is not touched
    assert db.get(ReminderOutbox, outbox.id) is not None
    assert db.get(Reminder, reminder.id).inactive is False


@pytest.mark.parametrize("overrides", [
    {"has_access_to_paid_version_for_free": True},
    {"subscription_active": True},
])
def test_entitled_accounts_are_notified_when_subscription_is_required(
    db, factory, clock, transport, monkeypatch, overrides
):
    monkeypatch.setattr(settings, "REQUIRES_SUBSCRIPTION", True)
    account = factory.account(**overrides)
    contact = factory.contact(account)
    user = factory.user(account)
    outbox = factory.outbox(factory.reminder(account, contact), user)

    result = process_outbox_entry(db, outbox.id, transport, clock=clock)

    assert result.sent
    assert len(transport.sent) == 1


def test_it_marks_the_one_time_reminder_as_inactive_once_it_is_sent(db, factory, world, clock, transport):
    reminder = factory.reminder(world.account, world.contact, frequency_type=FrequencyEnum.ONE_TIME)
    outbox = factory.outbox(reminder, world.user)

    result = process_outbox_entry(db, outbox.id, transport, clock=clock)

    assert result.outcome == ProcessOutcome.RETIRED
    assert result.next_occurrence is None
    assert db.get(ReminderOutbox, outbox.id) is None
    assert db.get(Reminder, reminder.id).inactive is True
    assert _outbox_for(db, reminder.id) == []


def test_it_reschedules_a_recurring_reminder_once_it_is_sent(db, factory, world, clock, transport):
    reminder = factory.reminder(world.account, world.contact)
    outbox = factory.outbox(reminder, world.user)

    result = process_outbox_entry(db, outbox.id, transport, clock=clock)

    assert result.outcome == ProcessOutcome.RESCHEDULED
    assert result.next_occurrence == date(2018, 1, 1)
    assert db.get(ReminderOutbox, outbox.id) is None
    assert db.get(Reminder, reminder.id).inactive is False

    remaining = _outbox_for(db, reminder.id)
    assert [(e.user_id, e.planned_date, e.nature) for e in remaining] == [
        (world.user.id, date(2018, 1, 1), NatureEnum.REMINDER),
    ]


def test_rescheduling_adds_notifications_from_reminder_rules(db, factory, world, clock, transport):
    factory.rule(world.account, 7)
    factory.rule(world.account, 30, active=False)
    reminder = factory.reminder(world.account, world.contact)
    outbox = factory.outbox(reminder, world.user)

    process_outbox_entry(db, outbox.id, transport, clock=clock)

    remaining = sorted(_outbox_for(db, reminder.id), key=lambda e: e.planned_date)
    assert [(e.planned_date, e.nature, e.notice_in_days) for e in remaining] == [
        (date(2017, 12, 25), NatureEnum.NOTIFICATION, 7),
        (date(2018, 1, 1), NatureEnum.REMINDER, None),
    ]


def test_rescheduling_can_be_left_to_the_producer(db, factory, world, clock, transport):
    reminder = factory.reminder(world.account, world.contact)
    outbox = factory.outbox(reminder, world.user)

    result = process_outbox_entry(db, outbox.id, transport, clock=clock, reschedule=False)

    assert result.outcome == ProcessOutcome.RESCHEDULED
    assert _outbox_for(db, reminder.id) == []
    assert db.get(Reminder, reminder.id).inactive is False


def test_it_creates_a_reminder_sent_object(db, factory, world, clock, transport):
    reminder = factory.reminder(world.account, world.contact)
    outbox = factory.outbox(reminder, world.user)

    process_outbox_entry(db, outbox.id, transport, clock=clock)

    rows = _sent_rows(db)
    assert len(rows) == 1
    record = rows[0]
    assert record.account_id == world.account.id
    assert record.reminder_id == reminder.id
    assert record.user_id == world.user.id
    assert record.planned_date == date(2017, 1, 1)
    assert record.nature == NatureEnum.REMINDER


def test_reprocessing_a_deleted_entry_is_an_error_not_a_duplicate(db, factory, world, clock, transport):
    reminder = factory.reminder(world.account, world.contact)
    outbox = factory.outbox(reminder, world.user)
    outbox_id = outbox.id

    process_outbox_entry(db, outbox_id, transport, clock=clock)
    with pytest.raises(OutboxEntryNotFound):
        process_outbox_entry(db, outbox_id, transport, clock=clock)

    assert len(transport.sent) == 1
    assert len(_sent_rows(db)) == 1


def test_transport_failure_leaves_the_entry_pending(db, factory, world, clock, failing_transport, transport):
    reminder = factory.reminder(world.account, world.contact, frequency_type=FrequencyEnum.ONE_TIME)
    outbox = factory.outbox(reminder, world.user)

    with pytest.raises(TransportError):
        process_outbox_entry(db, outbox.id, failing_transport, clock=clock)

    assert failing_transport.attempts == 1
    assert db.get(ReminderOutbox, outbox.id) is not None
    assert db.get(Reminder, reminder.id).inactive is False
    assert _sent_rows(db) == []

    # Retrying with the same id succeeds once the gateway is back
    result = process_outbox_entry(db, outbox.id, transport, clock=clock)
    assert result.outcome == ProcessOutcome.RETIRED
    assert len(_sent_rows(db)) == 1


def test_malformed_reminder_is_a_compose_error(db, factory, world, clock, transport):
    reminder = factory.reminder(world.account, world.contact, title="   ")
    outbox = factory.outbox(reminder, world.user)

    with pytest.raises(ComposeError):
        process_outbox_entry(db, outbox.id, transport, clock=clock)

    assert transport.sent == []
    assert db.get(ReminderOutbox, outbox.id) is not None


def test_invalid_frequency_is_a_compose_error(db, factory, world, clock, transport):
    reminder = factory.reminder(world.account, world.contact, frequency_type=FrequencyEnum.MONTH, frequency_number=0)
    outbox = factory.outbox(reminder, world.user)

    with pytest.raises(ComposeError):
        process_outbox_entry(db, outbox.id, transport, clock=clock)

    assert transport.sent == []
    assert db.get(ReminderOutbox, outbox.id) is not None


def test_already_logged_entry_is_removed_without_resending(db, factory, world, clock, transport):
    reminder = factory.reminder(world.account, world.contact)
    outbox = factory.outbox(reminder, world.user)
    db.add(ReminderSent(
        account_id=world.account.id,
        reminder_id=reminder.id,
        user_id=world.user.id,
        planned_date=date(2017, 1, 1),
        nature=NatureEnum.REMINDER,
    ))
    db.commit()

    result = process_outbox_entry(db, outbox.id, transport, clock=clock)

    assert result.outcome == ProcessOutcome.REPLAYED
    assert transport.sent == []
    assert db.get(ReminderOutbox, outbox.id) is None
    assert len(_sent_rows(db)) == 1


def test_dormant_recurring_reminder_catches_up(db, factory, world, clock, transport):
    reminder = factory.reminder(
        world.account, world.contact,
        initial_date=date(2014, 3, 10),
        frequency_type=FrequencyEnum.MONTH,
        frequency_number=1,
    )
    outbox = factory.outbox(reminder, world.user)

    result = process_outbox_entry(db, outbox.id, transport, clock=clock)

    assert result.next_occurrence == date(2017, 1, 10)
    assert [e.planned_date for e in _outbox_for(db, reminder.id)] == [date(2017, 1, 10)]
