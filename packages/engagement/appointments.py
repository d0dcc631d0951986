"""Appointment state machine.

Owns every appointment transition. Legal moves are listed once in
``APPOINTMENT_TRANSITIONS``; anything else raises ``InvalidTransition``.
Cross-entity effects (creating or settling the consultation-fee payment)
are sequenced by the orchestrator, not here.
"""

from typing import Any

import pydantic
import structlog

from engagement.config.schemas import EngineConfig
from engagement.errors import DeadlineExceeded, InvalidTransition, ValidationError
from engagement.models.appointment import (
    Appointment,
    AppointmentRequest,
    AppointmentStatus,
    ConsultationType,
    Urgency,
)
from engagement.models.events import EventLevel, EventType
from engagement.notifications import EventBuffer
from engagement.store.base import Transaction
from engagement.utils.ids import new_id, short_ref
from engagement.utils.timeutil import is_past

logger = structlog.get_logger()

S = AppointmentStatus

APPOINTMENT_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    S.PENDING_LAWYER_APPROVAL: frozenset(
        {S.APPROVED_AWAITING_PAYMENT, S.DECLINED, S.EXPIRED, S.CANCELLED}
    ),
    S.APPROVED_AWAITING_PAYMENT: frozenset({S.CONFIRMED, S.PAYMENT_EXPIRED}),
    S.CONFIRMED: frozenset({S.COMPLETED, S.CANCELLED}),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    """Whether ``current -> target`` is an edge of the appointment lifecycle."""
    return target in APPOINTMENT_TRANSITIONS.get(current, frozenset())


def _move(appointment: Appointment, target: AppointmentStatus, action: str) -> None:
    if not can_transition(appointment.status, target):
        raise InvalidTransition("appointment", appointment.id, appointment.status.value, action)
    logger.info(
        "Appointment transition",
        appointment_id=appointment.id,
        from_status=appointment.status.value,
        to_status=target.value,
    )
    appointment.status = target


class AppointmentStateMachine:
    """Booking, approval, payment gating and completion of consultations."""

    def __init__(self, config: EngineConfig) -> None:
        self.config = config

    def parse(self, request: AppointmentRequest | dict[str, Any]) -> AppointmentRequest:
        """Coerce raw input into a request without checking required fields."""
        if isinstance(request, AppointmentRequest):
            return request
        try:
            return AppointmentRequest.model_validate(request)
        except pydantic.ValidationError as e:
            fields = {".".join(str(p) for p in err["loc"]): err["msg"] for err in e.errors()}
            raise ValidationError("Invalid appointment request", fields) from e

    def validate(self, request: AppointmentRequest | dict[str, Any]) -> AppointmentRequest:
        """Check a booking request and report every problem at once.

        Raises:
            ValidationError: If required fields are missing or malformed
        """
        request = self.parse(request)

        errors: dict[str, str] = {}
        if not request.client_id:
            errors["client_id"] = "required"
        if not request.lawyer_id:
            errors["lawyer_id"] = "required"

        valid_types = {t.value for t in ConsultationType}
        if not request.consultation_type:
            errors["consultation_type"] = "required"
        elif request.consultation_type not in valid_types:
            errors["consultation_type"] = f"must be one of {sorted(valid_types)}"

        if not (request.case_type or "").strip():
            errors["case_type"] = "required"

        min_length = self.config.booking.min_description_length
        if len((request.description or "").strip()) < min_length:
            errors["description"] = f"must be at least {min_length} characters"

        if not (request.selected_date or "").strip():
            errors["selected_date"] = "required"
        if not (request.selected_time or "").strip():
            errors["selected_time"] = "required"

        if request.consultation_fee is None:
            errors["consultation_fee"] = "required"
        elif request.consultation_fee <= 0:
            errors["consultation_fee"] = "must be a positive amount"

        if request.urgency and request.urgency not in {u.value for u in Urgency}:
            errors["urgency"] = "must be one of low, medium, high"

        if errors:
            raise ValidationError("Invalid appointment request", errors)
        return request

    def book(
        self,
        tx: Transaction,
        request: AppointmentRequest | dict[str, Any],
        now: int,
        events: EventBuffer,
    ) -> Appointment:
        """Create an appointment awaiting the lawyer's decision."""
        request = self.validate(request)
        windows = self.config.time_windows

        appointment = Appointment(
            id=new_id("apt"),
            client_id=request.client_id,
            lawyer_id=request.lawyer_id,
            client_name=request.client_name,
            lawyer_name=request.lawyer_name,
            consultation_type=ConsultationType(request.consultation_type),
            case_type=request.case_type.strip(),
            description=request.description.strip(),
            urgency=Urgency(request.urgency or self.config.booking.default_urgency),
            selected_date=request.selected_date,
            selected_time=request.selected_time,
            consultation_fee=request.consultation_fee,
            status=S.PENDING_LAWYER_APPROVAL,
            case_id=request.case_id,
            created_at=now,
            approval_deadline=now + windows.approval_window_ms,
            approval_duration=windows.approval_window_ms,
        )
        tx.put(appointment)

        lawyer = appointment.lawyer_name or "the lawyer"
        events.emit(
            EventType.APPOINTMENT_BOOKED,
            now,
            title="Appointment Booked",
            message=(
                f"Your appointment request has been sent to {lawyer}. "
                f"They have {windows.lawyer_approval_hours:g}h to respond."
            ),
            appointment_id=appointment.id,
            approval_deadline=appointment.approval_deadline,
        )
        logger.info(
            "Appointment booked",
            appointment_id=appointment.id,
            client_id=appointment.client_id,
            lawyer_id=appointment.lawyer_id,
        )
        return appointment

    def approve(
        self, tx: Transaction, appointment_id: str, now: int, events: EventBuffer
    ) -> Appointment:
        """Accept the request and open the payment window."""
        appointment = tx.require(Appointment, appointment_id)
        if appointment.status == S.PENDING_LAWYER_APPROVAL and is_past(
            appointment.approval_deadline, now
        ):
            raise InvalidTransition(
                "appointment",
                appointment.id,
                appointment.status.value,
                "approve",
                reason="approval deadline has passed",
            )
        _move(appointment, S.APPROVED_AWAITING_PAYMENT, "approve")

        windows = self.config.time_windows
        appointment.approved_at = now
        appointment.payment_deadline = now + windows.payment_window_ms
        appointment.payment_duration = windows.payment_window_ms
        tx.put(appointment)

        events.emit(
            EventType.APPOINTMENT_APPROVED,
            now,
            title="Appointment Approved",
            message=(
                f"Appointment #{short_ref(appointment.id)} approved. Client has "
                f"{windows.client_payment_minutes:g} minutes to complete payment."
            ),
            level=EventLevel.SUCCESS,
            appointment_id=appointment.id,
            payment_deadline=appointment.payment_deadline,
        )
        return appointment

    def decline(
        self,
        tx: Transaction,
        appointment_id: str,
        reason: str,
        now: int,
        events: EventBuffer,
    ) -> Appointment:
        appointment = tx.require(Appointment, appointment_id)
        _move(appointment, S.DECLINED, "decline")
        appointment.declined_at = now
        appointment.decline_reason = reason or ""
        tx.put(appointment)

        suffix = f" Reason: {reason}" if reason else ""
        events.emit(
            EventType.APPOINTMENT_DECLINED,
            now,
            title="Appointment Declined",
            message=f"Appointment #{short_ref(appointment.id)} was declined.{suffix}",
            level=EventLevel.WARNING,
            appointment_id=appointment.id,
        )
        return appointment

    def confirm(
        self,
        tx: Transaction,
        appointment_id: str,
        paid_at: int,
        events: EventBuffer,
    ) -> Appointment:
        """Mark the consultation fee as received.

        Raises:
            DeadlineExceeded: If ``paid_at`` is at or after the payment deadline
        """
        appointment = tx.require(Appointment, appointment_id)
        if appointment.status == S.APPROVED_AWAITING_PAYMENT and is_past(
            appointment.payment_deadline, paid_at
        ):
            raise DeadlineExceeded(
                "appointment", appointment.id, appointment.payment_deadline, paid_at
            )
        _move(appointment, S.CONFIRMED, "confirm payment for")
        appointment.paid_at = paid_at
        tx.put(appointment)

        events.emit(
            EventType.APPOINTMENT_CONFIRMED,
            paid_at,
            title="Appointment Confirmed",
            message=f"Appointment #{short_ref(appointment.id)} is confirmed.",
            level=EventLevel.SUCCESS,
            appointment_id=appointment.id,
            payment_id=appointment.payment_id,
        )
        return appointment

    def expire_approval(
        self, tx: Transaction, appointment_id: str, now: int, events: EventBuffer
    ) -> Appointment:
        """Expire an unanswered request.

        No-op unless the appointment is still pending and its approval
        deadline has passed. The expiry takes effect at the deadline.
        """
        appointment = tx.require(Appointment, appointment_id)
        if appointment.status != S.PENDING_LAWYER_APPROVAL or not is_past(
            appointment.approval_deadline, now
        ):
            return appointment

        _move(appointment, S.EXPIRED, "expire")
        appointment.expired_at = appointment.approval_deadline
        tx.put(appointment)

        events.emit(
            EventType.APPOINTMENT_EXPIRED,
            appointment.approval_deadline,
            title="Appointment Expired",
            message=(
                f"Appointment #{short_ref(appointment.id)} expired, "
                "lawyer did not respond in time."
            ),
            level=EventLevel.WARNING,
            appointment_id=appointment.id,
        )
        return appointment

    def expire_payment(
        self, tx: Transaction, appointment_id: str, now: int, events: EventBuffer
    ) -> Appointment:
        """Release the slot when the client did not pay in time.

        No-op unless the appointment is awaiting payment and its payment
        deadline has passed. The expiry takes effect at the deadline.
        """
        appointment = tx.require(Appointment, appointment_id)
        if appointment.status != S.APPROVED_AWAITING_PAYMENT or not is_past(
            appointment.payment_deadline, now
        ):
            return appointment

        _move(appointment, S.PAYMENT_EXPIRED, "expire payment for")
        appointment.expired_at = appointment.payment_deadline
        tx.put(appointment)

        events.emit(
            EventType.APPOINTMENT_PAYMENT_EXPIRED,
            appointment.payment_deadline,
            title="Payment Window Expired",
            message=(
                f"Payment deadline passed for appointment "
                f"#{short_ref(appointment.id)}. Slot released."
            ),
            level=EventLevel.WARNING,
            appointment_id=appointment.id,
            payment_id=appointment.payment_id,
        )
        return appointment

    def cancel(
        self,
        tx: Transaction,
        appointment_id: str,
        reason: str,
        now: int,
        events: EventBuffer,
    ) -> Appointment:
        appointment = tx.require(Appointment, appointment_id)
        _move(appointment, S.CANCELLED, "cancel")
        appointment.cancelled_at = now
        appointment.cancel_reason = reason or ""
        tx.put(appointment)

        events.emit(
            EventType.APPOINTMENT_CANCELLED,
            now,
            title="Appointment Cancelled",
            message=f"Appointment #{short_ref(appointment.id)} has been cancelled.",
            appointment_id=appointment.id,
        )
        return appointment

    def complete(
        self, tx: Transaction, appointment_id: str, now: int, events: EventBuffer
    ) -> Appointment:
        appointment = tx.require(Appointment, appointment_id)
        _move(appointment, S.COMPLETED, "complete")
        appointment.completed_at = now
        tx.put(appointment)

        events.emit(
            EventType.APPOINTMENT_COMPLETED,
            now,
            title="Consultation Completed",
            message=f"Appointment #{short_ref(appointment.id)} marked as completed.",
            level=EventLevel.SUCCESS,
            appointment_id=appointment.id,
        )
        return appointment
