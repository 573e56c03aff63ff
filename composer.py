"""Builds the message for an outbox entry.

There is one builder per nature; both share the subject and greeting and
differ only in the body lines.
"""

from datetime import date

from database import NatureEnum
from errors import ComposeError
from recurrence import next_occurrence_for
from schemas import MessagePayload

DATE_FORMAT = "%b %d, %Y"


def _headers(outbox):
    reminder = outbox.reminder
    user = outbox.user
    if reminder is None or user is None or reminder.contact is None:
        raise ComposeError("Outbox entry is missing its reminder, user or contact", outbox.id)
    if not (reminder.title or "").strip():
        raise ComposeError(f"Reminder {reminder.id} has no title", outbox.id)
    return (
        f"Reminder for {reminder.contact.name}",
        f"Hi {user.first_name}",
    )


def _reminder_lines(outbox, today):
    reminder = outbox.reminder
    return [
        f"You wanted to be reminded of {reminder.title}",
        f"for {reminder.contact.name}",
    ]


def _notification_lines(outbox, today):
    reminder = outbox.reminder
    try:
        occurrence = next_occurrence_for(reminder, today) or reminder.initial_date
    except ValueError as e:
        raise ComposeError(f"Reminder {reminder.id} has an invalid frequency: {e}", outbox.id) from e

    # Only entries materialized from a reminder rule carry a day count
    days = outbox.notice_in_days if outbox.notice_in_days is not None else ""

    return [
        f"In {days} days (on {occurrence.strftime(DATE_FORMAT)}), the following event will happen:",
        reminder.title,
        f"for {reminder.contact.name}",
    ]


_BUILDERS = {
    NatureEnum.REMINDER: _reminder_lines,
    NatureEnum.NOTIFICATION: _notification_lines,
}


def compose(outbox, today: date) -> MessagePayload:
    """Build the MessagePayload for an outbox entry.

    Args:
        outbox: ReminderOutbox row with reminder, contact and user loaded
        today: Current date, used to find the occurrence a notification announces

    Raises:
        ComposeError: Missing related rows, empty title, bad frequency or unknown nature
    """
    subject, greeting = _headers(outbox)
    try:
        nature = NatureEnum(outbox.nature)
    except ValueError as e:
        raise ComposeError(f"Unknown nature {outbox.nature!r}", outbox.id) from e

    return MessagePayload(
        subject=subject,
        greeting=greeting,
        intro_lines=_BUILDERS[nature](outbox, today),
        nature=nature.value,
    )
