"""Daily operating window check."""

from datetime import datetime
from datetime import time as dt_time


def parse_time_of_day(value: str) -> dt_time:
    """Parse an ``HH:MM`` string.

    Raises:
        ValueError: If the string is not a valid time of day.
    """
    return datetime.strptime(value, "%H:%M").time()


def is_within_window(now: datetime, schedule_start: str, schedule_end: str) -> bool:
    """Return True if ``now`` falls inside today's ``[start, end]`` window.

    Both bounds are built on the date of ``now``, so a window whose end is
    earlier than its start (an overnight window) never matches.
    """
    start_time = parse_time_of_day(schedule_start)
    end_time = parse_time_of_day(schedule_end)

    start = now.replace(hour=start_time.hour, minute=start_time.minute, second=0, microsecond=0)
    end = now.replace(hour=end_time.hour, minute=end_time.minute, second=0, microsecond=0)
    return start <= now <= end
