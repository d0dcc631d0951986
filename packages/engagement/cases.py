"""Case state machine.

A case moves between ``ACTIVE``, ``PAYMENT_PENDING`` and ``OVERDUE`` while
fees are billed and collected, and leaves through one of the terminal
states ``CLOSED``, ``ENDED`` or ``TERMINATED``. Terminal cases accept no
documents, messages or payments.
"""

import structlog

from engagement.errors import CaseClosedError, InvalidTransition, ValidationError
from engagement.models.appointment import Appointment, AppointmentStatus
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
from engagement.models.events import EventLevel, EventType
from engagement.models.payment import Payment
from engagement.notifications import EventBuffer
from engagement.store.base import Transaction
from engagement.utils.ids import new_id, short_ref
from engagement.utils.timeutil import is_past

logger = structlog.get_logger()

C = CaseStatus
_EXITS = frozenset({C.CLOSED, C.ENDED, C.TERMINATED})

CASE_TRANSITIONS: dict[CaseStatus, frozenset[CaseStatus]] = {
    C.ACTIVE: frozenset({C.PAYMENT_PENDING}) | _EXITS,
    C.PAYMENT_PENDING: frozenset({C.ACTIVE, C.OVERDUE}) | _EXITS,
    C.OVERDUE: frozenset({C.ACTIVE}) | _EXITS,
}

INITIAL_PROGRESS = 10


def _move(case: Case, target: CaseStatus, action: str) -> None:
    if case.status.is_terminal:
        raise CaseClosedError(case.id, case.status.value)
    if target not in CASE_TRANSITIONS.get(case.status, frozenset()):
        raise InvalidTransition("case", case.id, case.status.value, action)
    logger.info(
        "Case transition",
        case_id=case.id,
        from_status=case.status.value,
        to_status=target.value,
    )
    case.status = target


def _ensure_open(case: Case) -> None:
    if case.status.is_terminal:
        raise CaseClosedError(case.id, case.status.value)


def _note(case: Case, kind: str, title: str, at: int, detail: str | None = None) -> None:
    case.timeline.append(
        TimelineEntry(id=new_id("tl"), kind=kind, title=title, detail=detail, date=at)
    )


class CaseStateMachine:
    """Billing cycles, collaboration history and closure of cases."""

    def open(
        self,
        tx: Transaction,
        request: CaseCreate,
        now: int,
        events: EventBuffer,
        appointment: Appointment | None = None,
    ) -> Case:
        """Create an active case, optionally from a completed consultation."""
        if appointment is not None and appointment.status != AppointmentStatus.COMPLETED:
            raise InvalidTransition(
                "appointment",
                appointment.id,
                appointment.status.value,
                "start a case from",
                reason="consultation is not completed",
            )

        client_id = request.client_id or (appointment.client_id if appointment else None)
        lawyer_id = request.lawyer_id or (appointment.lawyer_id if appointment else None)
        case_type = request.case_type or (appointment.case_type if appointment else None)

        errors: dict[str, str] = {}
        if not client_id:
            errors["client_id"] = "required"
        if not lawyer_id:
            errors["lawyer_id"] = "required"
        if not request.title.strip():
            errors["title"] = "required"
        if not case_type:
            errors["case_type"] = "required"
        if errors:
            raise ValidationError("Invalid case request", errors)

        case = Case(
            id=new_id("case"),
            client_id=client_id,
            lawyer_id=lawyer_id,
            client_name=request.client_name or (appointment.client_name if appointment else None),
            lawyer_name=request.lawyer_name or (appointment.lawyer_name if appointment else None),
            appointment_id=appointment.id if appointment else None,
            title=request.title.strip(),
            case_type=case_type,
            description=request.description or (appointment.description if appointment else None),
            estimated_fees=request.estimated_fees,
            status=C.ACTIVE,
            progress=INITIAL_PROGRESS,
            created_at=now,
        )
        _note(case, "opened", "Case opened", now)
        tx.put(case)

        origin = f" from consultation #{short_ref(appointment.id)}" if appointment else ""
        events.emit(
            EventType.CASE_OPENED,
            now,
            title="Case Started",
            message=f'Case "{case.title}" has been created{origin}.',
            level=EventLevel.SUCCESS,
            case_id=case.id,
            appointment_id=case.appointment_id,
        )
        return case

    def request_payment(
        self,
        tx: Transaction,
        case_id: str,
        amount: int,
        deadline: int,
        now: int,
        events: EventBuffer,
    ) -> Case:
        """Bill a new fee and start its payment window."""
        case = tx.require(Case, case_id)
        _ensure_open(case)
        if amount is None or amount <= 0:
            raise ValidationError("Invalid payment request", {"amount": "must be a positive amount"})
        if deadline <= now:
            raise ValidationError("Invalid payment request", {"deadline": "must be in the future"})

        _move(case, C.PAYMENT_PENDING, "request payment for")
        case.total_fees += amount
        case.next_payment_deadline = deadline
        _note(case, "payment_requested", f"Payment of {amount:,} requested", now)
        tx.put(case)

        events.emit(
            EventType.CASE_PAYMENT_REQUESTED,
            now,
            title="Payment Requested",
            message=f'{amount:,} payment requested for case "{case.title}".',
            case_id=case.id,
            amount=amount,
            deadline=deadline,
        )
        return case

    def record_payment(
        self, tx: Transaction, case_id: str, payment: Payment, now: int, events: EventBuffer
    ) -> Case:
        """Credit a successful payment.

        The payment billed for the current cycle settles it: the case returns
        to ``ACTIVE`` even if an earlier cycle was refunded and remains owed.
        """
        case = tx.require(Case, case_id)
        _ensure_open(case)

        case.paid_amount += payment.amount
        _note(case, "payment_received", f"Payment of {payment.amount:,} received", now)
        events.emit(
            EventType.CASE_PAYMENT_RECORDED,
            now,
            title="Payment Received",
            message=f'Payment of {payment.amount:,} recorded on case "{case.title}".',
            level=EventLevel.SUCCESS,
            case_id=case.id,
            payment_id=payment.id,
            paid_amount=case.paid_amount,
            total_fees=case.total_fees,
        )

        settles_cycle = payment.id == case.pending_payment_id
        if settles_cycle and case.status in (C.PAYMENT_PENDING, C.OVERDUE):
            _move(case, C.ACTIVE, "reactivate")
            case.next_payment_deadline = None
            case.pending_payment_id = None
            _note(case, "settled", "Requested payment received", now)
            events.emit(
                EventType.CASE_REACTIVATED,
                now,
                title="Case Active",
                message=f'Case "{case.title}" is paid up and active again.',
                level=EventLevel.SUCCESS,
                case_id=case.id,
            )
        tx.put(case)
        return case

    def reverse_payment(
        self, tx: Transaction, case_id: str, payment: Payment, now: int, events: EventBuffer
    ) -> Case:
        """Remove a refunded payment from the collected amount."""
        case = tx.require(Case, case_id)
        case.paid_amount = max(0, case.paid_amount - payment.amount)
        if case.is_open:
            _note(case, "payment_refunded", f"Payment of {payment.amount:,} refunded", now)
        tx.put(case)
        return case

    def expire_payment_window(
        self, tx: Transaction, case_id: str, now: int, events: EventBuffer
    ) -> Case:
        """Flag an unpaid fee as overdue.

        No-op unless the case is still waiting on payment, its deadline has
        passed and fees remain outstanding. Takes effect at the deadline.
        """
        case = tx.require(Case, case_id)
        if (
            case.status != C.PAYMENT_PENDING
            or not is_past(case.next_payment_deadline, now)
            or case.paid_amount >= case.total_fees
        ):
            return case

        at = case.next_payment_deadline
        _move(case, C.OVERDUE, "mark overdue")
        _note(case, "overdue", "Payment overdue", at)
        tx.put(case)

        events.emit(
            EventType.CASE_OVERDUE,
            at,
            title="Case Payment Overdue",
            message=f'Payment for case "{case.title}" is now overdue.',
            level=EventLevel.ERROR,
            case_id=case.id,
            payment_id=case.pending_payment_id,
        )
        return case

    def append_document(
        self,
        tx: Transaction,
        case_id: str,
        upload: DocumentUpload,
        now: int,
        events: EventBuffer,
    ) -> tuple[Case, CaseDocument]:
        case = tx.require(Case, case_id)
        _ensure_open(case)

        document = CaseDocument(
            id=new_id("doc"),
            name=upload.name,
            uploaded_by=upload.uploaded_by,
            size=upload.size,
            mime_type=upload.mime_type,
            uploaded_at=now,
        )
        case.documents.append(document)
        _note(case, "document", f'Document "{document.name}" uploaded', now)
        tx.put(case)

        events.emit(
            EventType.CASE_DOCUMENT_ADDED,
            now,
            title="Document Uploaded",
            message=f'"{document.name}" added to case.',
            level=EventLevel.SUCCESS,
            case_id=case.id,
            document_id=document.id,
        )
        return case, document

    def remove_document(
        self,
        tx: Transaction,
        case_id: str,
        document_id: str,
        now: int,
        events: EventBuffer,
    ) -> Case:
        case = tx.require(Case, case_id)
        _ensure_open(case)

        remaining = [d for d in case.documents if d.id != document_id]
        if len(remaining) == len(case.documents):
            raise ValidationError("Unknown document", {"document_id": f"{document_id} not on case"})
        removed = next(d for d in case.documents if d.id == document_id)
        case.documents = remaining
        _note(case, "document_removed", f'Document "{removed.name}" removed', now)
        tx.put(case)

        events.emit(
            EventType.CASE_DOCUMENT_REMOVED,
            now,
            title="Document Removed",
            message=f'"{removed.name}" removed from case.',
            case_id=case.id,
            document_id=document_id,
        )
        return case

    def append_message(
        self,
        tx: Transaction,
        case_id: str,
        text: str,
        sender: Party,
        now: int,
        events: EventBuffer,
        sender_name: str | None = None,
    ) -> tuple[Case, CaseMessage]:
        case = tx.require(Case, case_id)
        _ensure_open(case)
        if not (text or "").strip():
            raise ValidationError("Empty message", {"text": "required"})

        message = CaseMessage(
            id=new_id("msg"),
            sender=sender,
            sender_name=sender_name,
            text=text.strip(),
            timestamp=now,
        )
        case.messages.append(message)
        tx.put(case)

        events.emit(
            EventType.CASE_MESSAGE_ADDED,
            now,
            title="New Message",
            message=f'New message on case "{case.title}".',
            case_id=case.id,
            message_id=message.id,
            sender=sender.value,
        )
        return case, message

    def link_follow_up(
        self,
        tx: Transaction,
        case_id: str,
        appointment: Appointment,
        now: int,
        events: EventBuffer,
    ) -> Case:
        """Attach a follow-up consultation booked from this case."""
        case = tx.require(Case, case_id)
        _ensure_open(case)

        case.follow_up_ids.append(appointment.id)
        _note(
            case,
            "follow_up",
            "Follow-up consultation requested",
            now,
            detail=f"{appointment.selected_date} {appointment.selected_time}",
        )
        tx.put(case)

        events.emit(
            EventType.CASE_FOLLOW_UP_BOOKED,
            now,
            title="Follow-Up Requested",
            message=f'Follow-up consultation requested for case "{case.title}".',
            case_id=case.id,
            appointment_id=appointment.id,
            consultation_fee=appointment.consultation_fee,
            follow_up_id=appointment.id,
        )
        return case

    def update_progress(
        self,
        tx: Transaction,
        case_id: str,
        progress: int,
        now: int,
        events: EventBuffer,
    ) -> Case:
        case = tx.require(Case, case_id)
        _ensure_open(case)
        if not 0 <= progress <= 100:
            raise ValidationError("Invalid progress", {"progress": "must be between 0 and 100"})
        if progress < case.progress:
            raise ValidationError(
                "Invalid progress",
                {"progress": f"cannot decrease from {case.progress} to {progress}"},
            )
        if progress == case.progress:
            return case

        case.progress = progress
        _note(case, "progress", f"Progress updated to {progress}%", now)
        tx.put(case)

        events.emit(
            EventType.CASE_PROGRESS_UPDATED,
            now,
            title="Case Progress",
            message=f'Case "{case.title}" is {progress}% complete.',
            case_id=case.id,
            progress=progress,
        )
        return case

    def terminate(
        self,
        tx: Transaction,
        case_id: str,
        reason_category: TerminationReason | str,
        detail: str | None,
        initiated_by: Party,
        now: int,
        events: EventBuffer,
    ) -> Case:
        """End a case early.

        A client ending the engagement moves the case to ``ENDED``; a lawyer
        or admin moves it to ``TERMINATED``. Irreversible.
        """
        try:
            reason = TerminationReason(reason_category)
        except ValueError as e:
            raise ValidationError(
                "Invalid termination reason",
                {"reason_category": f"must be one of {[r.value for r in TerminationReason]}"},
            ) from e

        case = tx.require(Case, case_id)
        if initiated_by == Party.CLIENT:
            _move(case, C.ENDED, "end")
            case.ended_at = now
            event_type, title, level = EventType.CASE_ENDED, "Case Ended", EventLevel.WARNING
        else:
            _move(case, C.TERMINATED, "terminate")
            case.terminated_at = now
            event_type, title, level = EventType.CASE_TERMINATED, "Case Terminated", EventLevel.ERROR
        case.termination_reason = reason
        case.termination_detail = detail
        case.next_payment_deadline = None
        _note(case, case.status.value.lower(), title, now, detail=reason.value)
        tx.put(case)

        suffix = f" Reason: {detail}" if detail else ""
        events.emit(
            event_type,
            now,
            title=title,
            message=f"Case #{short_ref(case.id)} has been {title.split()[-1].lower()}.{suffix}",
            level=level,
            case_id=case.id,
            reason_category=reason.value,
            initiated_by=initiated_by.value,
        )
        return case

    def close(self, tx: Transaction, case_id: str, now: int, events: EventBuffer) -> Case:
        """Close a case as successfully resolved. Irreversible."""
        case = tx.require(Case, case_id)
        _move(case, C.CLOSED, "close")
        case.closed_at = now
        case.progress = 100
        case.next_payment_deadline = None
        _note(case, "closed", "Case closed", now)
        tx.put(case)

        events.emit(
            EventType.CASE_CLOSED,
            now,
            title="Case Closed",
            message=f"Case #{short_ref(case.id)} has been closed.",
            level=EventLevel.SUCCESS,
            case_id=case.id,
        )
        return case
