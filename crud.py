"""CRUD operations for Reminder Dispatch Service.

This module provides database operations for reminders, the outbox and the
sent log. Functions used inside the dispatch transaction only flush; the
caller owns the commit.
"""

from datetime import date, datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import (
    Account, FrequencyEnum, NatureEnum, Reminder, ReminderOutbox, ReminderRule, ReminderSent, User,
)
from logger_config import setup_logger
from recurrence import next_occurrence, nth_occurrence

logger = setup_logger(__name__, 'crud.log')


def get_outbox_entry(db: Session, outbox_id: int, lock: bool = False) -> Optional[ReminderOutbox]:
    """Get an outbox entry by ID.

    Args:
        db: Database session
        outbox_id: Outbox entry ID
        lock: Take a row lock (SELECT ... FOR UPDATE) for the rest of the transaction

    Returns:
        Optional[ReminderOutbox]: Entry if found, None otherwise
    """
    stmt = select(ReminderOutbox).where(ReminderOutbox.id == outbox_id)
    if lock:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalars().first()


def lock_reminder(db: Session, reminder_id: int) -> Optional[Reminder]:
    """Lock a reminder row so concurrent entries cannot race on its recurrence."""
    stmt = select(Reminder).where(Reminder.id == reminder_id).with_for_update()
    return db.execute(stmt).scalars().first()


def get_due_outbox_ids(db: Session, now: datetime) -> List[int]:
    """Get IDs of outbox entries that should be sent now.

    An entry is due when its planned date is in the past, or is today and
    the account's send time has been reached.

    Args:
        db: Database session
        now: Current time in the service timezone

    Returns:
        List[int]: Entry IDs, oldest planned date first
    """
    rows = db.execute(
        select(ReminderOutbox.id, ReminderOutbox.planned_date, Account)
        .join(Account, Account.id == ReminderOutbox.account_id)
        .where(ReminderOutbox.planned_date <= now.date())
        .order_by(ReminderOutbox.planned_date, ReminderOutbox.id)
    ).all()

    return [
        outbox_id
        for outbox_id, planned_date, account in rows
        if planned_date < now.date() or account.is_send_time_reached(now)
    ]


def find_sent_record(db: Session, outbox: ReminderOutbox) -> Optional[ReminderSent]:
    """Find the sent log row matching an outbox entry's delivery tuple."""
    return db.execute(
        select(ReminderSent).where(
            ReminderSent.account_id == outbox.account_id,
            ReminderSent.reminder_id == outbox.reminder_id,
            ReminderSent.user_id == outbox.user_id,
            ReminderSent.planned_date == outbox.planned_date,
            ReminderSent.nature == outbox.nature,
        )
    ).scalars().first()


def log_sent(db: Session, outbox: ReminderOutbox) -> ReminderSent:
    """Append a sent log row for a delivered outbox entry (flush only)."""
    record = ReminderSent(
        account_id=outbox.account_id,
        reminder_id=outbox.reminder_id,
        user_id=outbox.user_id,
        planned_date=outbox.planned_date,
        nature=outbox.nature,
    )
    db.add(record)
    db.flush()
    return record


def retire_reminder(db: Session, reminder: Reminder) -> None:
    """Mark a reminder inactive; it will never be scheduled again."""
    reminder.inactive = True
    db.flush()


def delete_outbox_entry(db: Session, outbox: ReminderOutbox) -> None:
    """Remove a processed outbox entry (flush only)."""
    db.delete(outbox)
    db.flush()


def _outbox_exists(db: Session, reminder_id: int, user_id: int, planned_date: date, nature: NatureEnum) -> bool:
    return db.execute(
        select(ReminderOutbox.id).where(
            ReminderOutbox.reminder_id == reminder_id,
            ReminderOutbox.user_id == user_id,
            ReminderOutbox.planned_date == planned_date,
            ReminderOutbox.nature == nature,
        )
    ).first() is not None


def schedule_reminder(db: Session, reminder: Reminder, occurrence: date, today: date) -> List[ReminderOutbox]:
    """Materialize one occurrence of a reminder into the outbox.

    Creates, for every user of the reminder's account, a `reminder` entry on
    the occurrence date and one `notification` entry per active reminder rule,
    planned that many days earlier when that is still after today. Tuples that
    already have an entry are skipped, so calling twice is harmless.

    Args:
        db: Database session
        reminder: Reminder to schedule
        occurrence: Date the reminder fires
        today: Current date

    Returns:
        List[ReminderOutbox]: Newly created entries (flushed, not committed)
    """
    users = db.execute(select(User).where(User.account_id == reminder.account_id)).scalars().all()
    rules = db.execute(
        select(ReminderRule).where(
            ReminderRule.account_id == reminder.account_id,
            ReminderRule.active.is_(True),
        )
    ).scalars().all()

    planned = [(occurrence, NatureEnum.REMINDER, None)]
    for rule in rules:
        notice_date = occurrence - timedelta(days=rule.number_of_days_before)
        if notice_date > today:
            planned.append((notice_date, NatureEnum.NOTIFICATION, rule.number_of_days_before))

    created = []
    for user in users:
        for planned_date, nature, notice_in_days in planned:
            if _outbox_exists(db, reminder.id, user.id, planned_date, nature):
                continue
            entry = ReminderOutbox(
                account_id=reminder.account_id,
                reminder_id=reminder.id,
                user_id=user.id,
                planned_date=planned_date,
                nature=nature,
                notice_in_days=notice_in_days,
            )
            db.add(entry)
            created.append(entry)

    db.flush()
    logger.info(f"Scheduled {len(created)} outbox entr(y/ies) for reminder {reminder.id} on {occurrence}")
    return created


def create_reminder(db: Session, reminder_data: dict, today: date) -> Reminder:
    """Create a reminder and schedule its first upcoming occurrence.

    Args:
        db: Database session
        reminder_data: Dictionary with reminder fields
            - account_id: int
            - contact_id: int
            - initial_date: date (MUST be date object!)
            - title: str
            - frequency_type: str or FrequencyEnum (default: one_time)
            - frequency_number: int (default: 1)
            - description: Optional[str]
        today: Current date

    Returns:
        Reminder: Created reminder

    Raises:
        ValueError: Unknown frequency type or non-positive frequency number
        SQLAlchemyError: On database errors
    """
    frequency_type = FrequencyEnum(reminder_data.get('frequency_type', FrequencyEnum.ONE_TIME))
    frequency_number = int(reminder_data.get('frequency_number') or 1)
    initial_date = reminder_data['initial_date']

    # Raises ValueError on a bad frequency before anything is written
    first = nth_occurrence(frequency_type, frequency_number, initial_date, 0)
    if first >= today:
        occurrence = first
    else:
        occurrence = next_occurrence(frequency_type, frequency_number, initial_date, today)

    db_reminder = Reminder(
        account_id=reminder_data['account_id'],
        contact_id=reminder_data['contact_id'],
        initial_date=initial_date,
        title=reminder_data['title'],
        description=reminder_data.get('description'),
        frequency_type=frequency_type,
        frequency_number=frequency_number,
        inactive=False,
    )
    db.add(db_reminder)
    db.flush()

    if occurrence is not None:
        schedule_reminder(db, db_reminder, occurrence, today)

    db.commit()
    db.refresh(db_reminder)
    return db_reminder
