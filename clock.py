"""Clock injected into the dispatcher so date arithmetic is testable."""

from datetime import date, datetime
from zoneinfo import ZoneInfo

from config import settings


class SystemClock:
    """Wall clock in the configured timezone."""

    def __init__(self, tz_name=None):
        self.tz = ZoneInfo(tz_name or settings.TIMEZONE)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()


class FixedClock(SystemClock):
    """Clock frozen at a given moment."""

    def __init__(self, moment: datetime, tz_name=None):
        super().__init__(tz_name)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=self.tz)
        self.moment = moment

    def now(self) -> datetime:
        return self.moment
