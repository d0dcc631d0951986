"""Common utilities for the engagement engine."""

from engagement.utils.hashing import compute_event_id, compute_text_hash
from engagement.utils.ids import new_id, short_ref
from engagement.utils.timeutil import (
    TimeRemaining,
    create_deadline,
    format_countdown,
    format_payment_countdown,
    is_past,
    time_remaining,
    urgency_level,
)

__all__ = [
    "compute_event_id",
    "compute_text_hash",
    "new_id",
    "short_ref",
    "TimeRemaining",
    "create_deadline",
    "format_countdown",
    "format_payment_countdown",
    "is_past",
    "time_remaining",
    "urgency_level",
]
