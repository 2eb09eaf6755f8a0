"""Due-date and reset computation for one-time and recurring chores.

Every function takes the current instant explicitly so callers (and tests)
control time. Calendar comparisons happen in the household timezone
configured through ``CHORE_TIMEZONE``; stored timestamps are UTC.
"""
import logging
import os
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from chorechamp.models.chore import WEEKDAYS, Chore, ChoreStatus, ChoreType, Frequency

load_dotenv()

logger = logging.getLogger(__name__)


def get_timezone() -> ZoneInfo:
    return ZoneInfo(os.getenv("CHORE_TIMEZONE", "UTC"))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # Naive values are stored UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def local_date(value: datetime, tz: Optional[ZoneInfo] = None) -> date:
    return _aware(value).astimezone(tz or get_timezone()).date()


def weekday_index(value: datetime, tz: Optional[ZoneInfo] = None) -> int:
    """0 = Sunday .. 6 = Saturday."""
    return (local_date(value, tz).weekday() + 1) % 7


def weekday_name(value: datetime, tz: Optional[ZoneInfo] = None) -> str:
    return WEEKDAYS[weekday_index(value, tz)]


def _midnight(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def days_until_next(today_index: int, days_of_week: List[str]) -> int:
    """Days from today to the next scheduled weekday strictly after today.

    When no scheduled day remains this week the schedule wraps to the first
    scheduled day of next week, so the result is always between 1 and 7.
    """
    indices = sorted({WEEKDAYS.index(day) for day in days_of_week})
    if not indices:
        raise ValueError("days_of_week must not be empty")
    for index in indices:
        if index > today_index:
            return index - today_index
    return 7 - today_index + indices[0]


def _completed_today(chore: Chore, now: datetime, tz: ZoneInfo) -> bool:
    if chore.completed_at is None:
        return False
    return local_date(chore.completed_at, tz) == local_date(now, tz)


def is_due(chore: Chore, now: datetime, tz: Optional[ZoneInfo] = None) -> bool:
    tz = tz or get_timezone()
    if chore.chore_type == ChoreType.ONE_TIME:
        if chore.due_date is None:
            return False
        return chore.completed_at is None and _aware(now) >= _aware(chore.due_date)

    recurrence = chore.recurrence
    if chore.chore_type != ChoreType.RECURRING or recurrence is None:
        return False

    if recurrence.frequency == Frequency.DAILY:
        return not _completed_today(chore, now, tz)

    if recurrence.frequency == Frequency.WEEKLY:
        if weekday_name(now, tz) not in recurrence.days_of_week:
            return False
        return not _completed_today(chore, now, tz)

    return False


def next_due_date(chore: Chore, now: datetime, tz: Optional[ZoneInfo] = None) -> Optional[datetime]:
    """Value stored as ``next_due_date`` whenever a chore is saved.

    Daily chores report midnight of the current day: the reset boundary,
    meaning "due today", rather than a future instant.
    """
    tz = tz or get_timezone()
    if chore.chore_type == ChoreType.ONE_TIME:
        return chore.due_date

    recurrence = chore.recurrence
    if recurrence is None:
        return None

    today = local_date(now, tz)
    if recurrence.frequency == Frequency.DAILY:
        return _midnight(today, tz)
    if recurrence.frequency == Frequency.WEEKLY and recurrence.days_of_week:
        offset = days_until_next(weekday_index(now, tz), recurrence.days_of_week)
        return _midnight(today + timedelta(days=offset), tz)
    return None


def next_reset_at(chore: Chore, now: datetime, tz: Optional[ZoneInfo] = None) -> Optional[datetime]:
    """Instant at which a completed recurring chore becomes pending again."""
    tz = tz or get_timezone()
    recurrence = chore.recurrence
    if chore.chore_type != ChoreType.RECURRING or recurrence is None:
        return None

    today = local_date(now, tz)
    if recurrence.frequency == Frequency.DAILY:
        return _midnight(today + timedelta(days=1), tz)
    if recurrence.frequency == Frequency.WEEKLY and recurrence.days_of_week:
        offset = days_until_next(weekday_index(now, tz), recurrence.days_of_week)
        return _midnight(today + timedelta(days=offset), tz)
    return None


def mark_recurring_completed(chore: Chore, now: datetime, tz: Optional[ZoneInfo] = None) -> None:
    if chore.recurrence is None:
        return
    chore.recurrence.last_completed = now
    chore.recurrence.reset_at = next_reset_at(chore, now, tz)


def clear_completion(chore: Chore) -> None:
    chore.completed_at = None
    chore.completed_by = None
    if chore.recurrence is not None:
        chore.recurrence.last_completed = None
        chore.recurrence.reset_at = None


def apply_due_reset(chore: Chore, now: datetime) -> bool:
    """Return a finished recurring occurrence to pending once its reset time passes.

    Returns True when the chore was changed and needs to be persisted.
    """
    recurrence = chore.recurrence
    if chore.chore_type != ChoreType.RECURRING or recurrence is None:
        return False
    if chore.status == ChoreStatus.PENDING or recurrence.reset_at is None:
        return False
    if _aware(now) < _aware(recurrence.reset_at):
        return False

    logger.info("Resetting recurring chore %s (reset due %s)", chore.id, recurrence.reset_at.isoformat())
    chore.status = ChoreStatus.PENDING
    chore.completed_by = None
    recurrence.last_completed = None
    recurrence.reset_at = None
    return True
