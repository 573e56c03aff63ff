"""Configuration module for Reminder Dispatch Service.

This module provides configuration settings using Pydantic Settings.
Environment variables can be used to override default values.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings for Reminder Dispatch Service.

    All settings can be overridden via environment variables.
    Example: export REQUIRES_SUBSCRIPTION=true
    """

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./reminders.db"
    """Database connection URL. Default: SQLite file in current directory"""

    # General Configuration
    TIMEZONE: str = "UTC"
    """Timezone used to decide what "today" is for recurrence math"""

    # Subscription policy
    REQUIRES_SUBSCRIPTION: bool = False
    """When True, accounts without a paid (or free-paid) plan get no notifications"""

    RESCHEDULE_INTO_OUTBOX: bool = True
    """Materialize the next occurrence of a recurring reminder right after sending"""

    # Background Worker Configuration
    WORKER_ENABLED: bool = True
    """Enable/disable background worker draining the outbox"""

    WORKER_CHECK_INTERVAL: int = 60
    """Interval in seconds for checking due outbox entries (default: 60 seconds)"""

    WORKER_POOL_SIZE: int = 4
    """Number of outbox entries processed in parallel"""

    # Notification gateway
    NOTIFICATION_API_URL: str = "http://127.0.0.1:1801"
    """Base URL of the notification gateway that delivers email/SMS"""

    TRANSPORT_TIMEOUT: float = 30.0
    """Timeout in seconds for one call to the notification gateway"""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    class Config:
        """Pydantic config"""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
