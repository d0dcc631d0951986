"""Deadline and countdown utilities.

Deadlines are absolute epoch-millisecond timestamps, never "time remaining",
so a reloaded process only has to compare them against the current time.
"""

from dataclasses import dataclass

from engagement.config.schemas import MS_PER_DAY, MS_PER_HOUR, MS_PER_MINUTE, MS_PER_SECOND


@dataclass(frozen=True)
class TimeRemaining:
    """Breakdown of the time left before a deadline."""

    total: int
    days: int
    hours: int
    minutes: int
    seconds: int
    expired: bool


def create_deadline(now: int, amount: float, unit: str = "hours") -> int:
    """Create a deadline timestamp ``amount`` units after ``now``.

    Args:
        now: Current time, epoch ms
        amount: Number of time units
        unit: One of "seconds", "minutes", "hours", "days"

    Returns:
        Deadline as epoch ms
    """
    multipliers = {
        "seconds": MS_PER_SECOND,
        "minutes": MS_PER_MINUTE,
        "hours": MS_PER_HOUR,
        "days": MS_PER_DAY,
    }
    if unit not in multipliers:
        raise ValueError(f"Unknown time unit: {unit}")
    return now + int(amount * multipliers[unit])


def is_past(deadline: int | None, now: int) -> bool:
    """True when ``deadline`` is set and ``now`` has reached it."""
    return deadline is not None and now >= deadline


def time_remaining(deadline: int, now: int) -> TimeRemaining:
    """Calculate remaining time from ``now`` to ``deadline``."""
    total = max(0, deadline - now)
    return TimeRemaining(
        total=total,
        days=total // MS_PER_DAY,
        hours=(total // MS_PER_HOUR) % 24,
        minutes=(total // MS_PER_MINUTE) % 60,
        seconds=(total // MS_PER_SECOND) % 60,
        expired=total <= 0,
    )


def format_countdown(deadline: int, now: int) -> str:
    """Format remaining time using the two most significant units."""
    r = time_remaining(deadline, now)
    if r.expired:
        return "Expired"
    if r.days > 0:
        return f"{r.days}d {r.hours}h"
    if r.hours > 0:
        return f"{r.hours}h {r.minutes}m"
    if r.minutes > 0:
        return f"{r.minutes}m {r.seconds}s"
    return f"{r.seconds}s"


def format_payment_countdown(deadline: int, now: int) -> str:
    """Format remaining time as MM:SS for payment timers."""
    r = time_remaining(deadline, now)
    if r.expired:
        return "00:00"
    return f"{r.minutes:02d}:{r.seconds:02d}"


def urgency_level(deadline: int, total_duration: int, now: int) -> str:
    """Classify how close a deadline is relative to its full window.

    Returns:
        "expired", "critical" (<= 15% left), "warning" (<= 40% left) or "normal"
    """
    r = time_remaining(deadline, now)
    if r.expired:
        return "expired"
    fraction = r.total / total_duration if total_duration > 0 else 0.0
    if fraction <= 0.15:
        return "critical"
    if fraction <= 0.4:
        return "warning"
    return "normal"
