from datetime import datetime, timezone, timedelta, time, date
from typing import Optional, Iterable, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

logger = logging.getLogger("automation_engine")


def utcnow() -> datetime:
    """Returns the current time in UTC, timezone aware."""
    return datetime.now(timezone.utc)


def to_timestamp(dt: datetime) -> float:
    """Converts a datetime object to a float timestamp."""
    return dt.timestamp()


def ensure_aware(dt: datetime) -> datetime:
    """Naive datetimes are treated as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def get_zone(tz_name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{tz_name}', falling back to UTC")
        return ZoneInfo("UTC")


def parse_hhmm(value: Optional[str]) -> Optional[time]:
    if not value:
        return None
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def sunday_based_weekday(d: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (d.weekday() + 1) % 7


# ── Active window ──────────────────────────────────────────────────────────────

def is_within_window(
    instant: datetime,
    tz_name: Optional[str] = "UTC",
    enabled_days: Optional[Iterable[int]] = None,
    hours_start: Optional[str] = None,
    hours_end: Optional[str] = None,
) -> bool:
    """
    True when `instant` falls on an enabled day and inside the active hours,
    both evaluated in the automation's local time. Windows where start > end
    wrap past midnight.
    """
    local = ensure_aware(instant).astimezone(get_zone(tz_name))
    days = set(enabled_days or [])
    if days and sunday_based_weekday(local.date()) not in days:
        return False

    start = parse_hhmm(hours_start)
    end = parse_hhmm(hours_end)
    if start is None or end is None or start == end:
        return True

    now_t = local.time().replace(tzinfo=None)
    if start < end:
        return start <= now_t < end
    return now_t >= start or now_t < end


def next_allowed_instant(
    instant: datetime,
    tz_name: Optional[str] = "UTC",
    enabled_days: Optional[Iterable[int]] = None,
    hours_start: Optional[str] = None,
    hours_end: Optional[str] = None,
) -> datetime:
    """
    Returns `instant` itself when it is inside the window, otherwise the next
    instant that is. Every allowed segment begins either at local midnight or
    at the configured start time, so only those candidates are checked.
    """
    instant = ensure_aware(instant)
    days = list(enabled_days or [])
    if is_within_window(instant, tz_name, days, hours_start, hours_end):
        return instant

    zone = get_zone(tz_name)
    local_day = instant.astimezone(zone).date()
    start = parse_hhmm(hours_start) or time(0, 0)

    candidates: List[datetime] = []
    for offset in range(0, 9):
        day = local_day + timedelta(days=offset)
        for t in (time(0, 0), start):
            candidate = datetime.combine(day, t, tzinfo=zone).astimezone(timezone.utc)
            if candidate > instant and is_within_window(candidate, tz_name, days, hours_start, hours_end):
                candidates.append(candidate)
        if candidates:
            return min(candidates)

    # Nothing enabled in a full week (e.g. enabled_days outside 0-6).
    logger.warning(f"No allowed window found for tz={tz_name} days={days}; not deferring")
    return instant


# ── Date-based trigger schedules ───────────────────────────────────────────────

def next_schedule_occurrence(schedule, after: datetime, tz_name: Optional[str] = "UTC") -> Optional[datetime]:
    """
    Next firing instant strictly after `after` for a TriggerSchedule, or None
    when a one-off schedule has already passed.
    """
    after = ensure_aware(after)
    zone = get_zone(tz_name)

    if schedule.type == "once":
        if not schedule.date:
            return None
        fire_at = schedule.date
        if fire_at.tzinfo is None:
            fire_at = fire_at.replace(tzinfo=zone)
        fire_at = fire_at.astimezone(timezone.utc)
        return fire_at if fire_at > after else None

    fire_time = parse_hhmm(schedule.time) or time(0, 0)
    local_day = after.astimezone(zone).date()
    days_of_week = set(schedule.day_of_week or [])
    days_of_month = set(schedule.day_of_month or [])

    for offset in range(0, 367):
        day = local_day + timedelta(days=offset)
        if days_of_week and sunday_based_weekday(day) not in days_of_week:
            continue
        if days_of_month and day.day not in days_of_month:
            continue
        candidate = datetime.combine(day, fire_time, tzinfo=zone).astimezone(timezone.utc)
        if candidate > after:
            return candidate
    return None
