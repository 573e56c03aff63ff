"""Pydantic schemas for Reminder Dispatch Service.

MessagePayload is what the composer hands to the transport; ProcessResult is
what the advancer returns for one outbox entry.
"""

from datetime import date
import enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ProcessOutcome(str, enum.Enum):
    """Terminal state of one outbox entry transition"""
    GATED = "gated"
    NOTIFIED = "notified"
    RETIRED = "retired"
    RESCHEDULED = "rescheduled"
    REPLAYED = "replayed"


class MessagePayload(BaseModel):
    """Outbound message, independent of the delivery channel."""

    subject: str = Field(..., description="Message subject", examples=["Reminder for John Doe"])
    greeting: str = Field(..., description="Opening line", examples=["Hi Jane"])
    intro_lines: List[str] = Field(
        default_factory=list,
        description="Body lines, in order",
        examples=[["You wanted to be reminded of Call mom", "for John Doe"]],
    )
    nature: str = Field(..., pattern="^(reminder|notification)$", description="Notification variant")


class ProcessResult(BaseModel):
    """Outcome of process_outbox_entry()."""

    outbox_id: int = Field(..., description="Processed outbox entry")
    reminder_id: int = Field(..., description="Owning reminder")
    outcome: ProcessOutcome = Field(..., description="gated, notified, retired, rescheduled or replayed")
    next_occurrence: Optional[date] = Field(None, description="Next occurrence for recurring reminders")
    payload: Optional[MessagePayload] = Field(None, description="Message handed to the transport, if any")

    @property
    def sent(self) -> bool:
        return self.outcome in (ProcessOutcome.NOTIFIED, ProcessOutcome.RETIRED, ProcessOutcome.RESCHEDULED)
