"""Case Pydantic models."""

from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, Field


class CaseStatus(str, Enum):
    """Case workflow status."""

    ACTIVE = "ACTIVE"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    OVERDUE = "OVERDUE"
    CLOSED = "CLOSED"
    ENDED = "ENDED"
    TERMINATED = "TERMINATED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_CASE_STATUSES


TERMINAL_CASE_STATUSES = frozenset(
    {CaseStatus.CLOSED, CaseStatus.ENDED, CaseStatus.TERMINATED}
)


class Party(str, Enum):
    """Who initiated an action."""

    CLIENT = "client"
    LAWYER = "lawyer"
    ADMIN = "admin"
    SYSTEM = "system"


class TerminationReason(str, Enum):
    """Reason category required when a case is ended early."""

    CLIENT_REQUEST = "client_request"
    NON_PAYMENT = "non_payment"
    CONFLICT_OF_INTEREST = "conflict_of_interest"
    UNRESPONSIVE = "unresponsive"
    SETTLED = "settled"
    OTHER = "other"


class CaseDocument(BaseModel):
    """Document attached to a case."""

    id: str
    name: str
    uploaded_by: Party = Party.CLIENT
    size: int | None = None
    mime_type: str | None = None
    uploaded_at: int


class CaseMessage(BaseModel):
    """Message exchanged on a case."""

    id: str
    sender: Party
    sender_name: str | None = None
    text: str
    timestamp: int


class TimelineEntry(BaseModel):
    """Entry in a case timeline."""

    id: str
    kind: str
    title: str
    detail: str | None = None
    date: int


class Case(BaseModel):
    """Ongoing engagement between a client and a lawyer.

    ``total_fees`` is the sum of every fee billed on the case and
    ``paid_amount`` the net amount collected against it.
    """

    record_kind: ClassVar[str] = "case"

    id: str
    client_id: str
    lawyer_id: str
    client_name: str | None = None
    lawyer_name: str | None = None
    appointment_id: str | None = None
    title: str
    case_type: str
    description: str | None = None

    estimated_fees: int = Field(default=0, ge=0)
    total_fees: int = Field(default=0, ge=0)
    paid_amount: int = Field(default=0, ge=0)

    status: CaseStatus = CaseStatus.ACTIVE
    progress: int = Field(default=0, ge=0, le=100)
    next_payment_deadline: int | None = None
    pending_payment_id: str | None = None
    follow_up_ids: list[str] = Field(default_factory=list)

    documents: list[CaseDocument] = Field(default_factory=list)
    messages: list[CaseMessage] = Field(default_factory=list)
    timeline: list[TimelineEntry] = Field(default_factory=list)

    created_at: int
    closed_at: int | None = None
    ended_at: int | None = None
    terminated_at: int | None = None
    termination_reason: TerminationReason | None = None
    termination_detail: str | None = None

    @property
    def is_open(self) -> bool:
        return not self.status.is_terminal

    @property
    def outstanding(self) -> int:
        return max(0, self.total_fees - self.paid_amount)


class CaseCreate(BaseModel):
    """Schema for creating a new case."""

    client_id: str | None = None
    lawyer_id: str | None = None
    client_name: str | None = None
    lawyer_name: str | None = None
    title: str
    case_type: str | None = None
    description: str | None = None
    estimated_fees: int = Field(default=0, ge=0)


class DocumentUpload(BaseModel):
    """Schema for attaching a document to a case."""

    name: str = Field(min_length=1)
    uploaded_by: Party = Party.CLIENT
    size: int | None = None
    mime_type: str | None = None
