"""Outbox advancer: takes one outbox entry from pending to done.

The transition for an entry is strictly sequential:

1. lock the entry and its reminder
2. entitlement gate (a denied account leaves the entry untouched)
3. compose the message and hand it to the transport
4. in one transaction: log the send, retire or reschedule the reminder
   (reminder entries only; a notification is just an advance notice),
   delete the entry

Any failure before step 4 commits leaves the entry pending, so the same call
can simply be retried. An entry that already has a sent log row (crash after
sending but before cleanup) is only removed, never sent twice.
"""

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import composer
import crud
import entitlement
from clock import SystemClock
from config import settings
from database import NatureEnum
from errors import ComposeError, OutboxEntryNotFound, StorageError
from logger_config import setup_logger
from recurrence import next_occurrence_for
from schemas import ProcessOutcome, ProcessResult

logger = setup_logger(__name__, 'dispatch.log')


def _load(db: Session, outbox_id: int):
    try:
        outbox = crud.get_outbox_entry(db, outbox_id, lock=True)
        reminder = crud.lock_reminder(db, outbox.reminder_id) if outbox else None
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Could not load outbox entry {outbox_id}: {str(e)}")
        raise StorageError(f"Could not load outbox entry {outbox_id}", outbox_id) from e

    if outbox is None or reminder is None:
        db.rollback()
        raise OutboxEntryNotFound(f"Outbox entry {outbox_id} not found", outbox_id)
    return outbox, reminder


def _commit(db: Session, outbox_id: int, step: str):
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Commit failed while {step} outbox entry {outbox_id}: {str(e)}")
        raise StorageError(f"Commit failed while {step} outbox entry {outbox_id}", outbox_id) from e


def process_outbox_entry(db: Session, outbox_id: int, transport, clock=None, reschedule=None) -> ProcessResult:
    """Send one outbox entry and advance its reminder.

    Args:
        db: Database session (one per call)
        outbox_id: Entry to process
        transport: NotificationTransport delivering the message
        clock: Provides today(); defaults to SystemClock in settings.TIMEZONE
        reschedule: Materialize the next occurrence of recurring reminders;
            defaults to settings.RESCHEDULE_INTO_OUTBOX

    Returns:
        ProcessResult: gated, notified, retired, rescheduled or replayed

    Raises:
        OutboxEntryNotFound: Entry does not exist (e.g. already processed)
        ComposeError: Reminder data cannot be turned into a message
        TransportError: Delivery failed; entry stays pending
        StorageError: Database failure; nothing committed
    """
    clock = clock or SystemClock()
    if reschedule is None:
        reschedule = settings.RESCHEDULE_INTO_OUTBOX
    today = clock.today()

    outbox, reminder = _load(db, outbox_id)
    nature = outbox.nature.value

    if not entitlement.is_allowed(outbox.account):
        db.rollback()
        logger.info(f"Account {outbox.account_id} has no entitlement, skipping outbox entry {outbox_id}")
        return ProcessResult(outbox_id=outbox_id, reminder_id=reminder.id, outcome=ProcessOutcome.GATED)

    try:
        already_sent = crud.find_sent_record(db, outbox) is not None
        if already_sent:
            logger.warning(f"Outbox entry {outbox_id} was already sent, removing it without resending")
            crud.delete_outbox_entry(db, outbox)
    except SQLAlchemyError as e:
        db.rollback()
        raise StorageError(f"Could not check sent log for outbox entry {outbox_id}", outbox_id) from e
    if already_sent:
        _commit(db, outbox_id, "replaying")
        return ProcessResult(outbox_id=outbox_id, reminder_id=reminder.id, outcome=ProcessOutcome.REPLAYED)

    try:
        try:
            next_date = next_occurrence_for(reminder, today)
        except ValueError as e:
            raise ComposeError(f"Reminder {reminder.id} has an invalid frequency: {e}", outbox_id) from e
        payload = composer.compose(outbox, today)
        transport.send(outbox.user, payload)
    except Exception:
        db.rollback()
        logger.error(f"Sending {nature} for outbox entry {outbox_id} failed, entry stays pending", exc_info=True)
        raise

    logger.info(f"Sent {nature} for reminder {reminder.id} to user {outbox.user_id} (planned {outbox.planned_date})")

    try:
        crud.log_sent(db, outbox)
        if outbox.nature is NatureEnum.NOTIFICATION:
            # Advance notice only; the occurrence itself has not fired yet
            outcome = ProcessOutcome.NOTIFIED
        elif next_date is None:
            crud.retire_reminder(db, reminder)
            outcome = ProcessOutcome.RETIRED
        else:
            if reschedule:
                crud.schedule_reminder(db, reminder, next_date, today)
            outcome = ProcessOutcome.RESCHEDULED
        crud.delete_outbox_entry(db, outbox)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Could not record outbox entry {outbox_id}: {str(e)}")
        raise StorageError(f"Could not record outbox entry {outbox_id}", outbox_id) from e
    _commit(db, outbox_id, "recording")

    logger.info(f"Outbox entry {outbox_id} done: {outcome.value}, next occurrence {next_date}")
    return ProcessResult(
        outbox_id=outbox_id,
        reminder_id=reminder.id,
        outcome=outcome,
        next_occurrence=next_date,
        payload=payload,
    )
