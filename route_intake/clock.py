from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Callable
from zoneinfo import ZoneInfo


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RouteClock:
    """Current time and calendar-day normalization in the dispatch timezone.

    Route dates are calendar days. The clock turns "today" and spreadsheet
    dates into midnight of that day in one configured timezone so that the
    (route number, date) key does not drift with the server's locale.
    """

    def __init__(self, tz_name: str, now: Callable[[], datetime] | None = None) -> None:
        self.tz = ZoneInfo(tz_name)
        self._now = now or _utc_now

    def now(self) -> datetime:
        return self._now().astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    def midnight(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self.tz)

    def start_of_today(self) -> datetime:
        return self.midnight(self.today())
