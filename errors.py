"""Exceptions raised while advancing an outbox entry.

A gated account is not an error: it is reported through ``ProcessResult``.
"""


class ProcessingError(Exception):
    """Base class; the outbox entry is still pending when this is raised."""

    def __init__(self, message, outbox_id=None):
        super().__init__(message)
        self.outbox_id = outbox_id


class OutboxEntryNotFound(ProcessingError):
    """The entry does not exist, usually because it was already processed."""


class ComposeError(ProcessingError):
    """Reminder data is malformed and no message can be built from it."""


class TransportError(ProcessingError):
    """The notification gateway rejected the message or could not be reached."""


class StorageError(ProcessingError):
    """Reading or committing rows failed; nothing was committed."""
