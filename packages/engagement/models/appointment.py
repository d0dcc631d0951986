"""Appointment Pydantic models."""

from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ConsultationType(str, Enum):
    """How the consultation takes place."""

    VIDEO = "video"
    IN_OFFICE = "in-office"
    PHONE = "phone"


class Urgency(str, Enum):
    """Client-declared urgency of the request."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AppointmentStatus(str, Enum):
    """Appointment lifecycle status."""

    PENDING_LAWYER_APPROVAL = "PENDING_LAWYER_APPROVAL"
    APPROVED_AWAITING_PAYMENT = "APPROVED_AWAITING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"
    PAYMENT_EXPIRED = "PAYMENT_EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_APPOINTMENT_STATUSES


TERMINAL_APPOINTMENT_STATUSES = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.DECLINED,
        AppointmentStatus.EXPIRED,
        AppointmentStatus.PAYMENT_EXPIRED,
        AppointmentStatus.CANCELLED,
    }
)


class Appointment(BaseModel):
    """Consultation appointment snapshot.

    All timestamps and deadlines are epoch milliseconds.
    """

    record_kind: ClassVar[str] = "appointment"

    id: str
    client_id: str
    lawyer_id: str
    client_name: str | None = None
    lawyer_name: str | None = None

    consultation_type: ConsultationType
    case_type: str
    description: str
    urgency: Urgency = Urgency.MEDIUM
    selected_date: str
    selected_time: str

    consultation_fee: int = Field(gt=0)
    status: AppointmentStatus = AppointmentStatus.PENDING_LAWYER_APPROVAL
    payment_id: str | None = None
    case_id: str | None = None

    created_at: int
    approval_deadline: int
    approval_duration: int
    payment_deadline: int | None = None
    payment_duration: int | None = None

    approved_at: int | None = None
    declined_at: int | None = None
    paid_at: int | None = None
    completed_at: int | None = None
    cancelled_at: int | None = None
    expired_at: int | None = None

    decline_reason: str | None = None
    cancel_reason: str | None = None


class AppointmentRequest(BaseModel):
    """Input accepted by booking.

    Fields are loosely typed here; the appointment state machine performs
    the validation so every problem is reported together. Accepts both
    snake_case and camelCase keys.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    client_id: str | None = None
    lawyer_id: str | None = None
    client_name: str | None = None
    lawyer_name: str | None = None
    consultation_type: str | None = None
    case_type: str | None = None
    description: str | None = None
    urgency: str | None = None
    selected_date: str | None = None
    selected_time: str | None = None
    consultation_fee: int | None = None
    case_id: str | None = None
