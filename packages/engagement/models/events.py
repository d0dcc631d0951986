"""Lifecycle event Pydantic models."""

from enum import Enum
from typing import Any

import orjson
from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Lifecycle events emitted to the notification sink."""

    # Appointment events
    APPOINTMENT_BOOKED = "appointment.booked"
    APPOINTMENT_APPROVED = "appointment.approved"
    APPOINTMENT_DECLINED = "appointment.declined"
    APPOINTMENT_CONFIRMED = "appointment.confirmed"
    APPOINTMENT_EXPIRED = "appointment.expired"
    APPOINTMENT_PAYMENT_EXPIRED = "appointment.payment_expired"
    APPOINTMENT_CANCELLED = "appointment.cancelled"
    APPOINTMENT_COMPLETED = "appointment.completed"

    # Payment events
    PAYMENT_CREATED = "payment.created"
    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    PAYMENT_EXPIRED = "payment.expired"
    PAYMENT_REFUNDED = "payment.refunded"

    # Case events
    CASE_OPENED = "case.opened"
    CASE_PAYMENT_REQUESTED = "case.payment_requested"
    CASE_PAYMENT_RECORDED = "case.payment_recorded"
    CASE_OVERDUE = "case.overdue"
    CASE_REACTIVATED = "case.reactivated"
    CASE_PROGRESS_UPDATED = "case.progress_updated"
    CASE_DOCUMENT_ADDED = "case.document_added"
    CASE_DOCUMENT_REMOVED = "case.document_removed"
    CASE_MESSAGE_ADDED = "case.message_added"
    CASE_FOLLOW_UP_BOOKED = "case.follow_up_booked"
    CASE_CLOSED = "case.closed"
    CASE_ENDED = "case.ended"
    CASE_TERMINATED = "case.terminated"

    # Engine events
    CONFIG_UPDATED = "config.updated"


class EventLevel(str, Enum):
    """Display severity for a notification."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class LifecycleEvent(BaseModel):
    """Event emitted by the engine after a committed transition.

    Delivery is at-least-once; consumers de-duplicate on ``id``.
    """

    id: str
    type: EventType
    occurred_at: int
    level: EventLevel = EventLevel.INFO
    title: str
    message: str = ""
    appointment_id: str | None = None
    payment_id: str | None = None
    case_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize the event for an external sink."""
        return orjson.dumps(self.model_dump(mode="json")).decode()
