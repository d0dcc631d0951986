"""Engagement lifecycle engine.

Drives consultation appointments, their fees, and the legal cases that
follow, with deadline-based expiry and lifecycle notifications.
"""

from engagement.clock import Clock, ManualClock, SystemClock
from engagement.errors import (
    CaseClosedError,
    DeadlineExceeded,
    InvalidTransition,
    LifecycleError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from engagement.orchestrator import LifecycleOrchestrator, OperationResult, create_orchestrator

__version__ = "0.1.0"

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "CaseClosedError",
    "DeadlineExceeded",
    "InvalidTransition",
    "LifecycleError",
    "NotFoundError",
    "OverpaymentError",
    "ValidationError",
    "LifecycleOrchestrator",
    "OperationResult",
    "create_orchestrator",
]
