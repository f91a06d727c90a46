"""
Organization Domain Models
Tenant boundary: credit balance, concurrency cap, rate limits and calling hours
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime, time, timedelta
import pytz


CREDIT_EXHAUSTED_REASON = "credit_exhausted"


class CallingWindow(BaseModel):
    """
    Organization calling hours.

    Stored on the organization row as JSONB in the calling_window column.
    Times are local to `timezone`; days use 0=Monday ... 6=Sunday.
    """

    start: str = Field(
        default="09:00",
        description="Start time for calling (HH:MM format)"
    )
    end: str = Field(
        default="19:00",
        description="End time for calling (HH:MM format)"
    )
    timezone: str = Field(
        default="America/New_York",
        description="Timezone for the window (e.g., 'America/New_York', 'UTC')"
    )
    allowed_days: List[int] = Field(
        default=[0, 1, 2, 3, 4],
        description="Days when calling is allowed (0=Monday, 6=Sunday)"
    )

    def _tz(self):
        try:
            return pytz.timezone(self.timezone)
        except pytz.exceptions.UnknownTimeZoneError:
            return pytz.UTC

    def _localize(self, check_time: Optional[datetime]) -> datetime:
        tz = self._tz()
        if check_time is None:
            return datetime.now(tz)
        if check_time.tzinfo is None:
            # Naive datetimes are UTC throughout the orchestrator
            check_time = pytz.UTC.localize(check_time)
        return check_time.astimezone(tz)

    def is_open(self, check_time: Optional[datetime] = None) -> tuple[bool, str]:
        """
        Check if calling is allowed at `check_time` (default: now).

        Returns:
            (is_allowed, reason)
        """
        local_time = self._localize(check_time)

        current_day = local_time.weekday()
        if current_day not in self.allowed_days:
            day_names = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
            return False, f"calling_not_allowed_on_{day_names[current_day]}"

        try:
            start_hour, start_min = map(int, self.start.split(":"))
            end_hour, end_min = map(int, self.end.split(":"))
        except ValueError:
            return False, "invalid_calling_window"

        start_time = time(start_hour, start_min)
        end_time = time(end_hour, end_min)
        current_time = local_time.time().replace(tzinfo=None)

        if start_time <= end_time:
            inside = start_time <= current_time < end_time
        else:
            # Overnight window, e.g. 20:00-02:00
            inside = current_time >= start_time or current_time < end_time

        if inside:
            return True, "within_calling_window"
        return False, f"outside_calling_window_{self.start}_{self.end}"

    def next_opening(self, from_time: Optional[datetime] = None) -> datetime:
        """Get the next time the calling window opens (aware, in the window's timezone)."""
        tz = self._tz()
        local_time = self._localize(from_time)
        start_hour, start_min = map(int, self.start.split(":"))

        today_start = tz.localize(
            datetime.combine(local_time.date(), time(start_hour, start_min))
        )
        if local_time.weekday() in self.allowed_days and local_time < today_start:
            return today_start

        check_date = local_time.date()
        for _ in range(7):
            check_date = check_date + timedelta(days=1)
            if check_date.weekday() in self.allowed_days:
                return tz.localize(datetime.combine(check_date, time(start_hour, start_min)))

        return today_start + timedelta(days=1)


class Organization(BaseModel):
    """Tenant that owns campaigns, numbers and a credit balance"""
    id: str
    name: str = ""
    credit_balance: int = Field(default=0, ge=0, description="Remaining credits")
    suspended: bool = False
    suspension_reason: Optional[str] = None
    max_concurrent_calls: int = Field(default=10, ge=1)
    max_calls_per_hour: Optional[int] = Field(default=None, ge=1)
    max_calls_per_day: Optional[int] = Field(default=None, ge=1)
    calling_window: CallingWindow = Field(default_factory=CallingWindow)
