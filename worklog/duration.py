"""
Worklog - Duration and date parsing

Turns the short human formats used on the command line ("1,5h", "1w2d",
"mon:7h30m", "08:30", "2024-03-01") into seconds and local datetimes.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from worklog.exceptions import DurationParseError, StartAndDurationExceedsNowError


# Units must appear in this order, each one optional. Weeks, days and hours
# allow up to two decimals; minutes are whole numbers.
DURATION_PATTERN = re.compile(
    r"(?:(?P<weeks>\d+(?:\.\d{1,2})?)w)?"
    r"(?:(?P<days>\d+(?:\.\d{1,2})?)d)?"
    r"(?:(?P<hours>\d+(?:\.\d{1,2})?)h)?"
    r"(?:(?P<minutes>\d+)m)?"
)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^\d{1,2}:\d{2}$")
DATE_TIME_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{1,2}:\d{2}$")

# A plain date means "that morning"
DEFAULT_START_OF_DAY = time(8, 0)

WEEKDAYS = {
    "mon": 0,
    "monday": 0,
    "tue": 1,
    "tuesday": 1,
    "wed": 2,
    "wednesday": 2,
    "thu": 3,
    "thursday": 3,
    "fri": 4,
    "friday": 4,
    "sat": 5,
    "saturday": 5,
    "sun": 6,
    "sunday": 6,
}


@dataclass(frozen=True)
class TimeSpent:
    """A parsed duration: the normalized text and its length in seconds."""

    time_spent: str
    time_spent_seconds: int


def parse_duration(
    text: str,
    hours_per_day: float = 7.5,
    days_per_week: float = 5.0,
) -> TimeSpent:
    """
    Parse a duration such as "1.5h", "7h30m" or "1w2,5d".

    Days and weeks are working days and weeks, so their length depends on
    the tracker's time tracking configuration.

    Args:
        text: Duration text, case-insensitive, comma or dot as decimal mark
        hours_per_day: Length of a working day in hours
        days_per_week: Number of working days in a week

    Returns:
        TimeSpent with the normalized text and total seconds

    Raises:
        DurationParseError: If no unit could be recognized
    """
    normalized = re.sub(r"\s+", "", text).lower().replace(",", ".")
    match = DURATION_PATTERN.fullmatch(normalized)
    if not normalized or match is None:
        raise DurationParseError(
            f"Could not obtain duration and unit from '{text}'",
            text=text,
        )

    weeks = float(match.group("weeks") or 0)
    days = float(match.group("days") or 0)
    hours = float(match.group("hours") or 0)
    minutes = int(match.group("minutes") or 0)

    seconds = (
        weeks * days_per_week * hours_per_day * 3600
        + days * hours_per_day * 3600
        + hours * 3600
        + minutes * 60
    )
    return TimeSpent(time_spent=normalized, time_spent_seconds=int(round(seconds)))


def parse_weekday(name: str) -> int:
    """Map a weekday name or three letter abbreviation to 0 (Monday) .. 6."""
    try:
        return WEEKDAYS[name.strip().lower()]
    except KeyError:
        raise DurationParseError(f"Unknown weekday '{name}'", text=name) from None


def parse_weekday_durations(entries: list[str]) -> list[tuple[int, str]]:
    """
    Split entries like "Mon:1,5h" into (weekday, duration text) pairs.

    Raises:
        DurationParseError: If an entry has no ':' or an unknown weekday
    """
    result: list[tuple[int, str]] = []
    for entry in entries:
        day_name, sep, duration = entry.partition(":")
        if not sep or not duration.strip():
            raise DurationParseError(
                f"Unable to split '{entry}' into weekday and duration, missing ':'?",
                text=entry,
            )
        result.append((parse_weekday(day_name), duration.strip()))
    return result


def last_weekday_from(start: datetime, weekday: int) -> datetime:
    """
    Walk back from ``start`` to the most recent date falling on ``weekday``.

    Returns ``start`` itself when it already falls on that weekday.
    """
    if not 0 <= weekday <= 6:
        raise ValueError(f"weekday must be in 0..6, got {weekday}")
    return start - timedelta(days=(start.weekday() - weekday) % 7)


def now_local() -> datetime:
    """Current time as an aware datetime in the local zone."""
    return datetime.now().astimezone()


def str_to_datetime(text: str, now: datetime | None = None) -> datetime:
    """
    Parse a start time given on the command line.

    Accepted forms:
        - "HH:MM": that time today
        - "YYYY-MM-DD": 08:00 on that day
        - "YYYY-MM-DDTHH:MM": that exact local time
        - any full ISO 8601 timestamp

    Returns:
        Aware datetime in the local zone unless the input carried an offset

    Raises:
        DurationParseError: If the text matches none of the forms
    """
    now = now or now_local()
    value = text.strip()

    try:
        if DATE_PATTERN.match(value):
            day = date.fromisoformat(value)
            return datetime.combine(day, DEFAULT_START_OF_DAY).astimezone()
        if TIME_PATTERN.match(value):
            parsed = datetime.strptime(value, "%H:%M").time()
            return datetime.combine(now.date(), parsed).astimezone()
        if DATE_TIME_PATTERN.match(value):
            return datetime.strptime(value, "%Y-%m-%dT%H:%M").astimezone()
        parsed_dt = datetime.fromisoformat(value)
    except ValueError as e:
        raise DurationParseError(f"Unable to parse '{text}' into a date/time: {e}", text=text)

    if parsed_dt.tzinfo is None:
        parsed_dt = parsed_dt.astimezone()
    return parsed_dt


def calculate_started_time(
    start: datetime | None,
    duration_seconds: int,
    now: datetime | None = None,
) -> datetime:
    """
    Work out when a work log started.

    Without an explicit start the entry is assumed to end now. With one, the
    start is kept as given.

    Raises:
        StartAndDurationExceedsNowError: If start + duration is in the future
    """
    now = now or now_local()
    duration = timedelta(seconds=duration_seconds)
    proposed = start if start is not None else now - duration

    end = proposed + duration
    if end > now:
        raise StartAndDurationExceedsNowError(
            "Starting point + duration > now",
            {"start": proposed.isoformat(), "duration_seconds": duration_seconds, "end": end.isoformat()},
        )
    return proposed


def seconds_to_hour_and_min(seconds: int) -> str:
    """Format seconds as HH:MM."""
    hours, remainder = divmod(int(seconds), 3600)
    return f"{hours:02}:{remainder // 60:02}"


def format_duration(seconds: int) -> str:
    """Human duration text as stored alongside work logs, e.g. "1h 30m"."""
    hours, remainder = divmod(max(int(seconds), 0), 3600)
    minutes = remainder // 60
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    return f"{minutes}m"
