AUTO_BREAK_MINUTES = 30  # default 30-minute unpaid break
AUTO_BREAK_THRESHOLD_HOURS = 6.0  # only apply break if shift >= 6 hours


def calculate_auto_break(
    total_minutes: int,
    threshold_hours: float = AUTO_BREAK_THRESHOLD_HOURS,
    break_minutes: int = AUTO_BREAK_MINUTES,
) -> int:
    """Return the unrecorded break to deduct from a shift of ``total_minutes``.

    The duration calculator never decides this itself; callers look up the
    organization's policy, call this, and pass the result as ``break_minutes``.

    Args:
        total_minutes: Whole minutes between clock-in and clock-out.
        threshold_hours: Shift length at which the break kicks in.
        break_minutes: Minutes to deduct once the threshold is reached.

    Returns:
        int: Minutes to deduct (0 for short shifts).
    """
    if total_minutes >= threshold_hours * 60:
        return break_minutes
    return 0


def effective_break_minutes(
    total_minutes: int,
    recorded_break_minutes: int,
    threshold_hours: float = AUTO_BREAK_THRESHOLD_HOURS,
    auto_break_minutes: int = AUTO_BREAK_MINUTES,
) -> int:
    """Recorded breaks win; otherwise fall back to the automatic deduction."""
    if recorded_break_minutes and recorded_break_minutes > 0:
        return recorded_break_minutes
    return calculate_auto_break(total_minutes, threshold_hours, auto_break_minutes)
