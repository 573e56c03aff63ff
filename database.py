"""Database module for Reminder Dispatch Service.

This module defines SQLAlchemy models and database session management.
IMPORTANT: initial_date and planned_date are stored as Date objects, NOT strings.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Boolean, Column, Date, DateTime, Enum as SQLEnum, ForeignKey, Index, Integer, String,
    create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from config import settings

# SQLAlchemy Base
Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class FrequencyEnum(enum.Enum):
    """How often a reminder repeats"""
    ONE_TIME = "one_time"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class NatureEnum(enum.Enum):
    """Which notification variant an outbox entry delivers"""
    REMINDER = "reminder"
    NOTIFICATION = "notification"


class Account(Base):
    """Account owning users, contacts and reminders."""

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True)
    default_time_reminder_is_sent = Column(String(5), nullable=False, default="09:00",
                                           doc="Send time preference, HH:MM")
    has_access_to_paid_version_for_free = Column(Boolean, nullable=False, default=False)
    subscription_active = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    users = relationship("User", back_populates="account")
    reminder_rules = relationship("ReminderRule", back_populates="account")

    def is_send_time_reached(self, now):
        """True once the wall clock passed the account's HH:MM send time.

        Raises:
            ValueError: default_time_reminder_is_sent is not a valid HH:MM
        """
        send_time = datetime.strptime(self.default_time_reminder_is_sent or "00:00", "%H:%M").time()
        return now.time() >= send_time

    def __repr__(self):
        return f"<Account(id={self.id}, send_time={self.default_time_reminder_is_sent})>"


class User(Base):
    """User receiving the notifications."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=False)
    locale = Column(String, nullable=False, default="en")

    account = relationship("Account", back_populates="users")

    def __repr__(self):
        return f"<User(id={self.id}, account={self.account_id}, email={self.email})>"


class Contact(Base):
    """Contact a reminder is about."""

    __tablename__ = "contacts"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=True)

    @property
    def name(self):
        """Display name: first and last name, blanks dropped."""
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def __repr__(self):
        return f"<Contact(id={self.id}, name={self.name})>"


class Reminder(Base):
    """Reminder model - a (possibly recurring) event about a contact.

    frequency_number is ignored for one_time reminders.
    """

    __tablename__ = "reminders"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    contact_id = Column(Integer, ForeignKey("contacts.id"), nullable=False)

    initial_date = Column(Date, nullable=False, doc="First occurrence")
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)

    frequency_type = Column(
        SQLEnum(FrequencyEnum, values_callable=_enum_values, name="frequency_type"),
        nullable=False,
        default=FrequencyEnum.ONE_TIME,
    )
    frequency_number = Column(Integer, nullable=False, default=1)
    inactive = Column(Boolean, nullable=False, default=False, index=True)

    account = relationship("Account")
    contact = relationship("Contact")

    def __repr__(self):
        return (
            f"<Reminder(id={self.id}, title={self.title}, initial={self.initial_date}, "
            f"every={self.frequency_number} {self.frequency_type.value}, inactive={self.inactive})>"
        )


class ReminderRule(Base):
    """Per-account rule: send a notification N days before each occurrence."""

    __tablename__ = "reminder_rules"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    number_of_days_before = Column(Integer, nullable=False)
    active = Column(Boolean, nullable=False, default=True)

    account = relationship("Account", back_populates="reminder_rules")


class ReminderOutbox(Base):
    """One planned delivery of a reminder to a user."""

    __tablename__ = "reminder_outbox"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    reminder_id = Column(Integer, ForeignKey("reminders.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    planned_date = Column(Date, nullable=False)
    nature = Column(
        SQLEnum(NatureEnum, values_callable=_enum_values, name="outbox_nature"),
        nullable=False,
        default=NatureEnum.REMINDER,
    )
    notice_in_days = Column(Integer, nullable=True, doc="Days ahead of the occurrence, notifications only")

    account = relationship("Account")
    reminder = relationship("Reminder")
    user = relationship("User")

    __table_args__ = (
        Index('idx_outbox_planned', 'planned_date'),
        Index('idx_outbox_reminder', 'reminder_id', 'planned_date'),
    )

    def __repr__(self):
        return (
            f"<ReminderOutbox(id={self.id}, reminder={self.reminder_id}, user={self.user_id}, "
            f"planned={self.planned_date}, nature={self.nature.value})>"
        )


class ReminderSent(Base):
    """Append-only log of every notification actually delivered."""

    __tablename__ = "reminder_sent"

    id = Column(Integer, primary_key=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    reminder_id = Column(Integer, ForeignKey("reminders.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    planned_date = Column(Date, nullable=False)
    nature = Column(
        SQLEnum(NatureEnum, values_callable=_enum_values, name="sent_nature"),
        nullable=False,
    )
    sent_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    __table_args__ = (
        Index('idx_sent_key', 'account_id', 'reminder_id', 'user_id', 'planned_date', 'nature'),
    )


def _engine_kwargs(url):
    kwargs = {"echo": False}  # Set echo to True for SQL debugging
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory databases must share one connection across worker threads
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return kwargs


# Database Engine Setup
engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))

# Session Factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope():
    """Session for one unit of work; always closed on exit.

    Usage:
        with session_scope() as db:
            dispatcher.process_outbox_entry(db, outbox_id, transport)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Create all tables
Base.metadata.create_all(bind=engine)
