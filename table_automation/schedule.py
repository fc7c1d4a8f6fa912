"""
Next-fire-time calculation for scheduled automations.

Calendar slots (daily, weekly, monthly) are wall-clock times in the
schedule's own timezone (an IANA name stored with the schedule, UTC unless
configured otherwise). Minute and hour intervals count elapsed time.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from . import config

logger = logging.getLogger(__name__)

INTERVALS = ("minute", "hour", "day", "week", "month")
_UTC = ZoneInfo("UTC")

# Builder convention: 0 = Sunday ... 6 = Saturday
WEEKDAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


@dataclass
class ScheduleSpec:
    """Recurrence settings of a schedule trigger."""
    interval: str = "day"
    interval_value: int = 1
    time: str = "09:00"
    day_of_week: Optional[int] = None
    day_of_month: Optional[int] = None
    timezone: str = config.DEFAULT_TIMEZONE

    def __post_init__(self):
        if self.interval not in INTERVALS:
            raise ValueError(f"Unknown schedule interval: {self.interval}")
        if self.interval_value < 1:
            raise ValueError("interval_value must be at least 1")
        if self.day_of_week is not None and not 0 <= self.day_of_week <= 6:
            raise ValueError("day_of_week must be between 0 (Sunday) and 6 (Saturday)")
        if self.day_of_month is not None and not 1 <= self.day_of_month <= 31:
            raise ValueError("day_of_month must be between 1 and 31")
        parse_time_of_day(self.time)
        ZoneInfo(self.timezone)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduleSpec":
        return cls(
            interval=data.get("interval") or "day",
            interval_value=int(data.get("interval_value") or 1),
            time=data.get("time") or "09:00",
            day_of_week=data.get("day_of_week"),
            day_of_month=data.get("day_of_month"),
            timezone=data.get("timezone") or config.DEFAULT_TIMEZONE,
        )

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def parse_time_of_day(value: str) -> time:
    """Parse 'HH:MM' into a time. Raises ValueError if malformed."""
    try:
        hours, minutes = (int(part) for part in value.split(":"))
        return time(hours, minutes)
    except (AttributeError, TypeError, ValueError):
        raise ValueError(f"Invalid time of day: {value!r}, expected HH:MM")


def _at(day: date, at: time, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, at, tzinfo=tz)


def _sunday_based_weekday(day: date) -> int:
    # date.weekday() is Monday = 0
    return (day.weekday() + 1) % 7


def _clamped_day(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def next_fire_time(spec: ScheduleSpec, from_time: datetime) -> datetime:
    """
    Compute the next instant a schedule fires strictly after from_time.

    - minute/hour: from_time plus interval_value units
    - day: next occurrence of spec.time, tomorrow if today's has passed
    - week: next spec.day_of_week at spec.time, a week out if today's slot passed
    - month: spec.day_of_month at spec.time, clamped to the month's last day

    Naive from_time values are read in the schedule's timezone. The result is
    an aware datetime in that timezone.
    """
    tz = spec.tz
    now = from_time.replace(tzinfo=tz) if from_time.tzinfo is None else from_time.astimezone(tz)

    if spec.interval in ("minute", "hour"):
        # Elapsed time, so a DST shift does not stretch or shrink the interval
        delta = timedelta(**{f"{spec.interval}s": spec.interval_value})
        return (now.astimezone(_UTC) + delta).astimezone(tz)

    at = parse_time_of_day(spec.time)
    today = now.date()

    if spec.interval == "day":
        candidate = _at(today, at, tz)
        if candidate <= now:
            candidate = _at(today + timedelta(days=1), at, tz)
        return candidate

    if spec.interval == "week":
        target = spec.day_of_week if spec.day_of_week is not None else _sunday_based_weekday(today)
        days_until = (target - _sunday_based_weekday(today)) % 7
        candidate = _at(today + timedelta(days=days_until), at, tz)
        if candidate <= now:
            candidate = _at(today + timedelta(days=days_until + 7), at, tz)
        return candidate

    day_of_month = spec.day_of_month if spec.day_of_month is not None else today.day
    candidate = _at(_clamped_day(today.year, today.month, day_of_month), at, tz)
    if candidate <= now:
        year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
        candidate = _at(_clamped_day(year, month, day_of_month), at, tz)
    return candidate


def should_run_scheduled(spec: ScheduleSpec, last_run: Optional[datetime], now: datetime) -> bool:
    """True if a schedule is due: it never ran, or its next fire time has arrived."""
    if last_run is None:
        return True
    return now >= next_fire_time(spec, last_run)


def _ordinal(n: int) -> str:
    if 11 <= n % 100 <= 13:
        return f"{n}th"
    suffix = {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")
    return f"{n}{suffix}"


def describe_schedule(spec: ScheduleSpec) -> str:
    """Human-readable schedule, e.g. 'Every Monday at 09:00'."""
    n = spec.interval_value
    if spec.interval == "minute":
        return f"Every {n} minute{'s' if n != 1 else ''}"
    if spec.interval == "hour":
        return f"Every {n} hour{'s' if n != 1 else ''}"
    if spec.interval == "day":
        return f"Daily at {spec.time}"
    if spec.interval == "week":
        day = WEEKDAY_NAMES[spec.day_of_week] if spec.day_of_week is not None else "week"
        return f"Every {day} at {spec.time}"
    day_of_month = spec.day_of_month or 1
    return f"On the {_ordinal(day_of_month)} of each month at {spec.time}"
