"""Payment ledger Pydantic models."""

from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, Field, model_validator


class PaymentType(str, Enum):
    """What a payment is collected for."""

    CONSULTATION_FEE = "consultation_fee"
    CASE_FEE = "case_fee"


class PaymentStatus(str, Enum):
    """Payment collection outcome."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    REFUNDED = "REFUNDED"


class Payment(BaseModel):
    """Ledger entry for one fee owned by an appointment or a case."""

    record_kind: ClassVar[str] = "payment"

    id: str
    type: PaymentType
    appointment_id: str | None = None
    case_id: str | None = None
    client_id: str | None = None
    lawyer_id: str | None = None
    description: str | None = None

    amount: int = Field(gt=0)
    status: PaymentStatus = PaymentStatus.PENDING
    created_at: int
    deadline: int | None = None
    retry_of: str | None = None

    paid_at: int | None = None
    expired_at: int | None = None
    failed_at: int | None = None
    failure_reason: str | None = None
    refunded_at: int | None = None

    @model_validator(mode="after")
    def _single_parent(self) -> "Payment":
        if (self.appointment_id is None) == (self.case_id is None):
            raise ValueError("payment needs exactly one of appointment_id or case_id")
        return self

    @property
    def parent_id(self) -> str:
        return self.appointment_id or self.case_id  # type: ignore[return-value]

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING


class ParentRef(BaseModel):
    """Reference to the entity that owns a payment."""

    appointment_id: str | None = None
    case_id: str | None = None

    @classmethod
    def appointment(cls, appointment_id: str) -> "ParentRef":
        return cls(appointment_id=appointment_id)

    @classmethod
    def case(cls, case_id: str) -> "ParentRef":
        return cls(case_id=case_id)
