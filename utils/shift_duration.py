from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple

from pydantic import BaseModel

from core.errors import InvalidRange
from utils.timezone_helpers import ensure_timezone_aware, local_date

OVERTIME_THRESHOLD_HOURS = 40
STALE_THRESHOLD_HOURS = 16
MIN_SHIFT_MINUTES = 5
MAX_SHIFT_MINUTES = 1440  # 24 hours


class ShiftDuration(BaseModel):
    total_minutes: int
    net_minutes: int
    break_minutes: int
    hours: int
    minutes: int
    formatted: str
    crossed_midnight: bool
    # Always the clock-in calendar date, even when the shift ends the next day
    attributed_date: date


class OvertimeSplit(BaseModel):
    regular_hours: float
    overtime_hours: float
    total_hours: float


def attributed_shift_date(clock_in: datetime, tz: str = "UTC") -> date:
    """Calendar day a shift's hours are credited to: the clock-in day in ``tz``."""
    return local_date(ensure_timezone_aware(clock_in), tz)


def calculate_shift_duration(
    clock_in: datetime,
    clock_out: datetime,
    break_minutes: int = 0,
    tz: str = "UTC",
) -> ShiftDuration:
    """Duration of a shift, correct across midnight.

    Duration is the continuous span between the two instants; whether the
    shift crossed midnight and which day it is attributed to are decided in
    the organization's timezone ``tz``. The break is applied as given; any
    automatic break policy is the caller's job.

    Raises:
        InvalidRange: clock-in is after clock-out.
    """
    clock_in = ensure_timezone_aware(clock_in)
    clock_out = ensure_timezone_aware(clock_out)

    if clock_in > clock_out:
        raise InvalidRange(
            clock_in_at=clock_in.isoformat(), clock_out_at=clock_out.isoformat()
        )

    total_minutes = int((clock_out - clock_in).total_seconds() // 60)
    break_minutes = max(0, break_minutes or 0)
    net_minutes = max(0, total_minutes - break_minutes)

    start_day = local_date(clock_in, tz)
    end_day = local_date(clock_out, tz)

    hours, minutes = divmod(net_minutes, 60)

    return ShiftDuration(
        total_minutes=total_minutes,
        net_minutes=net_minutes,
        break_minutes=break_minutes,
        hours=hours,
        minutes=minutes,
        formatted=format_duration(hours, minutes),
        crossed_midnight=start_day != end_day,
        attributed_date=start_day,
    )


def format_duration(hours: int, minutes: int) -> str:
    if hours == 0 and minutes == 0:
        return "0m"
    if hours == 0:
        return f"{minutes}m"
    if minutes == 0:
        return f"{hours}h"
    return f"{hours}h {minutes}m"


def format_duration_from_minutes(total_minutes: int) -> str:
    hours, minutes = divmod(total_minutes, 60)
    return format_duration(hours, minutes)


def is_shift_stale(
    clock_in: datetime,
    threshold_hours: float = STALE_THRESHOLD_HOURS,
    now: Optional[datetime] = None,
) -> bool:
    now = now or datetime.now(timezone.utc)
    return ensure_timezone_aware(now) > ensure_timezone_aware(clock_in) + timedelta(
        hours=threshold_hours
    )


def get_open_shift_hours(clock_in: datetime, now: Optional[datetime] = None) -> int:
    """Whole hours a still-open shift has been running."""
    now = now or datetime.now(timezone.utc)
    elapsed = ensure_timezone_aware(now) - ensure_timezone_aware(clock_in)
    return int(elapsed.total_seconds() // 3600)


def validate_shift_duration(
    total_minutes: int,
    min_minutes: int = MIN_SHIFT_MINUTES,
    max_minutes: int = MAX_SHIFT_MINUTES,
) -> Tuple[bool, Optional[str]]:
    if total_minutes < min_minutes:
        return (
            False,
            f"Shift duration ({total_minutes} min) is less than minimum ({min_minutes} min)",
        )
    if total_minutes > max_minutes:
        return (
            False,
            f"Shift duration ({total_minutes} min) exceeds maximum ({max_minutes} min)",
        )
    return True, None


def calculate_overtime(
    weekly_minutes: int, overtime_threshold_hours: float = OVERTIME_THRESHOLD_HOURS
) -> OvertimeSplit:
    """Split a week's worked minutes into regular and overtime hours.

    The calculator is stateless per call; summing the week's shifts (by
    attributed date) is up to the caller.
    """
    total_hours = weekly_minutes / 60
    overtime_hours = max(0.0, total_hours - overtime_threshold_hours)
    regular_hours = min(total_hours, overtime_threshold_hours)

    return OvertimeSplit(
        regular_hours=round(regular_hours, 2),
        overtime_hours=round(overtime_hours, 2),
        total_hours=round(total_hours, 2),
    )
