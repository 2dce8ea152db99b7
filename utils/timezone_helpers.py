"""
Timezone utilities. All instants are stored in UTC; organizations carry an
IANA timezone that decides which calendar day a shift belongs to.
"""

from datetime import date, datetime
from datetime import time as datetime_time
from datetime import timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo


def from_utc_to_local(utc_dt: datetime, tz: str) -> datetime:
    """
    Convert UTC datetime to local datetime in the specified timezone.

    Args:
        utc_dt: UTC datetime (naive values are assumed to be UTC)
        tz: IANA timezone string (e.g., 'America/New_York', 'Europe/Berlin')

    Returns:
        datetime: Local datetime in the specified timezone
    """
    if utc_dt.tzinfo is None:
        utc_dt = utc_dt.replace(tzinfo=timezone.utc)

    return utc_dt.astimezone(ZoneInfo(tz))


def to_utc(dt: datetime) -> datetime:
    """Normalize any datetime to an aware UTC datetime (naive means UTC)."""
    return ensure_timezone_aware(dt).astimezone(timezone.utc)


def local_date(dt: datetime, tz: str) -> date:
    """Calendar date of an instant as seen in the given timezone."""
    return from_utc_to_local(dt, tz).date()


def local_start_of_day(date_or_dt, tz: str) -> datetime:
    """
    Get the start of day (00:00:00) in the specified timezone.

    Args:
        date_or_dt: date or datetime object
        tz: IANA timezone string

    Returns:
        datetime: Start of day in UTC
    """
    if isinstance(date_or_dt, datetime):
        day = date_or_dt.date()
    else:
        day = date_or_dt

    local_start = datetime.combine(day, datetime_time.min, tzinfo=ZoneInfo(tz))
    return local_start.astimezone(timezone.utc)


def local_end_of_day(date_or_dt, tz: str) -> datetime:
    """
    Get the end of day (23:59:59.999999) in the specified timezone.

    Returns:
        datetime: End of day in UTC
    """
    if isinstance(date_or_dt, datetime):
        day = date_or_dt.date()
    else:
        day = date_or_dt

    local_end = datetime.combine(day, datetime_time.max, tzinfo=ZoneInfo(tz))
    return local_end.astimezone(timezone.utc)


def get_week_range(utc_ref: datetime, tz: str) -> Tuple[date, date, datetime, datetime]:
    """
    Get week range (Monday to Sunday) based on a reference datetime in the specified timezone.

    Args:
        utc_ref: Reference UTC datetime
        tz: IANA timezone string

    Returns:
        Tuple containing:
        - start: Local date of the week start (Monday)
        - end: Local date of the week end (Sunday)
        - start_dt: Week start datetime in UTC
        - end_dt: Week end datetime in UTC
    """
    ref_date = local_date(utc_ref, tz)

    # weekday() returns 0=Monday, 6=Sunday
    week_start_date = ref_date - timedelta(days=ref_date.weekday())
    week_end_date = week_start_date + timedelta(days=6)

    start_dt = local_start_of_day(week_start_date, tz)
    end_dt = local_end_of_day(week_end_date, tz)

    return (week_start_date, week_end_date, start_dt, end_dt)


def validate_timezone(tz: str) -> bool:
    """
    Validate if the timezone string is a valid IANA timezone.
    """
    try:
        ZoneInfo(tz)
        return True
    except Exception:
        return False


def get_default_timezone() -> str:
    """Timezone used for organizations that never configured one."""
    return "UTC"


def resolve_timezone(tz: Optional[str]) -> str:
    """Return ``tz`` when it is a usable IANA name, else the default."""
    if tz and validate_timezone(tz):
        return tz
    return get_default_timezone()


def ensure_timezone_aware(dt: datetime, default_tz: Optional[str] = None) -> datetime:
    """
    Ensure a datetime is timezone-aware, defaulting to UTC if naive.

    SQLite hands back naive datetimes even for timezone=True columns, so every
    value read from the database passes through here before arithmetic.

    Args:
        dt: datetime object
        default_tz: Optional default timezone if dt is naive

    Returns:
        datetime: timezone-aware datetime
    """
    if dt.tzinfo is None:
        if default_tz:
            return dt.replace(tzinfo=ZoneInfo(default_tz))
        else:
            return dt.replace(tzinfo=timezone.utc)
    return dt


def format_utc_datetime(dt: Optional[datetime]) -> Optional[str]:
    """ISO 8601 string in UTC with a 'Z' suffix, or None."""
    if dt is None:
        return None
    return to_utc(dt).isoformat().replace("+00:00", "Z")
