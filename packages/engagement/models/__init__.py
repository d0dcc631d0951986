"""Pydantic models for the engagement lifecycle engine."""

from engagement.models.appointment import (
    Appointment,
    AppointmentRequest,
    AppointmentStatus,
    ConsultationType,
    Urgency,
)
from engagement.models.case import (
    Case,
    CaseCreate,
    CaseDocument,
    CaseMessage,
    CaseStatus,
    DocumentUpload,
    Party,
    TerminationReason,
    TimelineEntry,
)
from engagement.models.events import EventLevel, EventType, LifecycleEvent
from engagement.models.payment import ParentRef, Payment, PaymentStatus, PaymentType

__all__ = [
    "Appointment",
    "AppointmentRequest",
    "AppointmentStatus",
    "ConsultationType",
    "Urgency",
    "Case",
    "CaseCreate",
    "CaseDocument",
    "CaseMessage",
    "CaseStatus",
    "DocumentUpload",
    "Party",
    "TerminationReason",
    "TimelineEntry",
    "EventLevel",
    "EventType",
    "LifecycleEvent",
    "ParentRef",
    "Payment",
    "PaymentStatus",
    "PaymentType",
]
