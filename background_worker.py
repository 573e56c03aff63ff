"""Background Worker for Reminder Dispatch Service.

This module drains the reminder outbox. Every WORKER_CHECK_INTERVAL seconds it
looks for due entries and puts their IDs on a queue; a pool of
WORKER_POOL_SIZE consumers processes them in parallel.

The worker:
- Enqueues each due entry once, even if a previous poll is still working on it
- Runs every entry in its own thread with its own database session
- Logs failures and leaves the entry pending so the next poll retries it
"""

import asyncio
import signal
import sys
from typing import Optional, Set

import crud
import database
from clock import SystemClock
from config import settings
from dispatcher import process_outbox_entry
from errors import OutboxEntryNotFound, ProcessingError
from logger_config import setup_logger
from transport import HttpNotificationTransport

# Configure logging
logger = setup_logger(__name__, 'worker.log')

# Global flag for graceful shutdown
shutdown_requested = False


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully."""
    global shutdown_requested
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    shutdown_requested = True


def process_one(outbox_id: int, transport, clock) -> Optional[str]:
    """Process a single outbox entry in a fresh session.

    Returns:
        str: Outcome value, or None if the entry failed and stays pending
    """
    with database.session_scope() as db:
        try:
            result = process_outbox_entry(db, outbox_id, transport, clock=clock)
            return result.outcome.value
        except OutboxEntryNotFound:
            logger.info(f"Outbox entry {outbox_id} already processed")
            return None
        except ProcessingError as e:
            logger.error(f"Outbox entry {outbox_id} failed: {type(e).__name__}: {str(e)}")
            return None


def enqueue_due_entries(queue: asyncio.Queue, pending: Set[int], clock) -> int:
    """Put due outbox entry IDs on the queue, skipping ones already queued.

    Returns:
        int: Number of newly enqueued entries
    """
    with database.session_scope() as db:
        due_ids = crud.get_due_outbox_ids(db, clock.now())

    enqueued = 0
    for outbox_id in due_ids:
        if outbox_id in pending:
            continue
        pending.add(outbox_id)
        queue.put_nowait(outbox_id)
        enqueued += 1

    if enqueued:
        logger.info(f"Enqueued {enqueued} due outbox entr(y/ies)")
    else:
        logger.debug("No due outbox entries at this time")
    return enqueued


async def consumer(name: str, queue: asyncio.Queue, pending: Set[int], transport, clock):
    """Take outbox IDs off the queue until cancelled."""
    while True:
        outbox_id = await queue.get()
        try:
            outcome = await asyncio.to_thread(process_one, outbox_id, transport, clock)
            logger.debug(f"[{name}] outbox entry {outbox_id}: {outcome}")
        except Exception as e:
            logger.error(f"[{name}] Unexpected error on outbox entry {outbox_id}: {str(e)}", exc_info=True)
        finally:
            pending.discard(outbox_id)
            queue.task_done()


async def worker_loop(transport=None, clock=None):
    """Main worker loop that runs continuously.

    Polls for due entries at the configured interval and feeds the consumer pool.
    """
    logger.info("Background worker started")
    logger.info(f"Worker enabled: {settings.WORKER_ENABLED}")
    logger.info(f"Check interval: {settings.WORKER_CHECK_INTERVAL} seconds")
    logger.info(f"Pool size: {settings.WORKER_POOL_SIZE}")
    logger.info(f"Notification API URL: {settings.NOTIFICATION_API_URL}")

    if not settings.WORKER_ENABLED:
        logger.warning("Worker is disabled in configuration. Exiting.")
        return

    transport = transport or HttpNotificationTransport()
    clock = clock or SystemClock()
    queue: asyncio.Queue = asyncio.Queue()
    pending: Set[int] = set()
    consumers = [
        asyncio.create_task(consumer(f"consumer-{i}", queue, pending, transport, clock))
        for i in range(max(1, settings.WORKER_POOL_SIZE))
    ]

    iteration = 0
    try:
        while not shutdown_requested:
            try:
                iteration += 1
                logger.debug(f"Worker iteration {iteration} started")

                await asyncio.to_thread(enqueue_due_entries, queue, pending, clock)

                # Break sleep into 1-second intervals to allow quick shutdown
                for _ in range(settings.WORKER_CHECK_INTERVAL):
                    if shutdown_requested:
                        break
                    await asyncio.sleep(1)

            except Exception as e:
                logger.error(f"Error in worker loop iteration {iteration}: {str(e)}", exc_info=True)
                await asyncio.sleep(5)  # Brief pause before retrying

        # Let in-flight entries finish; dequeued tasks run to completion
        await queue.join()
    finally:
        for task in consumers:
            task.cancel()
        await asyncio.gather(*consumers, return_exceptions=True)

    logger.info("Background worker shutting down gracefully")


def main():
    """Main entry point for the background worker."""
    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    logger.info("=" * 60)
    logger.info("Reminder Dispatch Service - Background Worker")
    logger.info("=" * 60)

    try:
        asyncio.run(worker_loop())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as e:
        logger.error(f"Fatal error in background worker: {str(e)}", exc_info=True)
        sys.exit(1)

    logger.info("Background worker stopped")
    sys.exit(0)


if __name__ == "__main__":
    main()
