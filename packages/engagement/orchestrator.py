"""Lifecycle orchestrator.

The facade callers use to drive appointments, payments and cases. Every
operation runs as one command: it takes the engine lock, applies all of
its writes inside a single store transaction, and only after the commit
hands the resulting events to the notification sink. Chained writes such
as approve + create payment or confirm + update parent therefore land
together or not at all.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import pydantic
import structlog
from pydantic import BaseModel

from engagement.appointments import AppointmentStateMachine
from engagement.cases import CaseStateMachine
from engagement.clock import Clock, SystemClock
from engagement.config.loader import load_engine_config
from engagement.config.schemas import EngineConfig, TimeWindows
from engagement.config.settings import get_settings
from engagement.deadlines import DeadlineKind, DeadlineTracker
from engagement.errors import (
    CaseClosedError,
    DeadlineExceeded,
    InvalidTransition,
    LifecycleError,
    NotFoundError,
    ValidationError,
)
from engagement.ledger import PaymentLedger
from engagement.logs import setup_logging
from engagement.models.appointment import Appointment, AppointmentRequest, AppointmentStatus
from engagement.models.case import (
    Case,
    CaseCreate,
    CaseStatus,
    DocumentUpload,
    Party,
    TerminationReason,
)
from engagement.models.events import EventType, LifecycleEvent
from engagement.models.payment import ParentRef, Payment, PaymentStatus, PaymentType
from engagement.notifications import (
    CompositeNotificationSink,
    EventBuffer,
    InMemoryNotificationSink,
    LoggingNotificationSink,
    NotificationSink,
)
from engagement.store import get_record_store
from engagement.store.base import RecordStore, Transaction
from engagement.utils.timeutil import is_past

logger = structlog.get_logger()

EntityT = TypeVar("EntityT", bound=BaseModel)


@dataclass
class OperationResult(Generic[EntityT]):
    """Updated entity snapshot plus the events the operation emitted."""

    entity: EntityT
    events: list[LifecycleEvent] = field(default_factory=list)
    related: list[BaseModel] = field(default_factory=list)

    @property
    def event_types(self) -> list[EventType]:
        return [e.type for e in self.events]


class LifecycleOrchestrator:
    """Engagement lifecycle engine facade.

    Args:
        store: Record store holding appointments, payments and cases
        clock: Time source; defaults to wall-clock time
        sink: Receives committed lifecycle events
        config: Time windows and engine policy
    """

    def __init__(
        self,
        store: RecordStore,
        clock: Clock | None = None,
        sink: NotificationSink | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.sink = sink or LoggingNotificationSink()
        self.config = config or EngineConfig()

        self.appointments = AppointmentStateMachine(self.config)
        self.ledger = PaymentLedger()
        self.cases = CaseStateMachine()
        self.tracker = DeadlineTracker(store, self.clock)

        self._lock = threading.Lock()
        self._delivery_lock = threading.Lock()
        self._undelivered: list[LifecycleEvent] = []

    # ── Plumbing ─────────────────────────────────────────────

    def _now(self, now: int | None) -> int:
        return self.clock.now_ms() if now is None else now

    @contextmanager
    def _command(self, action: str, **context: Any) -> Iterator[tuple[Transaction, EventBuffer]]:
        events = EventBuffer()
        with self._lock:
            try:
                with self.store.transaction() as tx:
                    yield tx, events
            except LifecycleError as e:
                logger.warning(
                    "Operation rejected",
                    action=action,
                    code=e.code,
                    error=e.message,
                    **context,
                )
                raise
        if events.events:
            self._deliver(events.events)

    def _deliver(self, events: list[LifecycleEvent]) -> None:
        # Sinks de-duplicate by event id, so a failed batch is simply resent.
        with self._delivery_lock:
            batch = [*self._undelivered, *events]
            if not batch:
                return
            try:
                self.sink.publish(batch)
            except Exception:
                logger.exception("Notification delivery failed", undelivered=len(batch))
                self._undelivered = batch
            else:
                self._undelivered = []

    @property
    def undelivered(self) -> list[LifecycleEvent]:
        """Committed events the sink has not accepted yet."""
        return list(self._undelivered)

    def redeliver(self) -> int:
        """Resend events a failing sink rejected. Returns how many remain."""
        self._deliver([])
        return len(self._undelivered)

    # ── Appointments ─────────────────────────────────────────

    def book_appointment(
        self, request: AppointmentRequest | dict[str, Any], now: int | None = None
    ) -> OperationResult[Appointment]:
        """Client books a consultation; the lawyer's approval window opens."""
        now = self._now(now)
        with self._command("book_appointment") as (tx, events):
            appointment = self.appointments.book(tx, request, now, events)
        return OperationResult(appointment, events.events)

    def book_follow_up(
        self,
        case_id: str,
        request: AppointmentRequest | dict[str, Any],
        now: int | None = None,
    ) -> OperationResult[Appointment]:
        """Client books a follow-up consultation from an open case.

        Client, lawyer and case type are taken from the case. The fee
        defaults to the discounted follow-up rate and the description to a
        reference to the case. The new appointment then follows the normal
        approval and payment flow.
        """
        now = self._now(now)
        with self._command("book_follow_up", case_id=case_id) as (tx, events):
            case = tx.require(Case, case_id)
            if case.status.is_terminal:
                raise CaseClosedError(case.id, case.status.value)

            parsed = self.appointments.parse(request)
            booking = parsed.model_copy(
                update={
                    "client_id": case.client_id,
                    "client_name": parsed.client_name or case.client_name,
                    "lawyer_id": case.lawyer_id,
                    "lawyer_name": case.lawyer_name,
                    "case_type": case.case_type,
                    "description": (
                        parsed.description or f"Follow-up consultation for case: {case.title}"
                    ),
                    "consultation_fee": (
                        parsed.consultation_fee or self.config.booking.follow_up_fee
                    ),
                    "case_id": case.id,
                }
            )
            appointment = self.appointments.book(tx, booking, now, events)
            case = self.cases.link_follow_up(tx, case.id, appointment, now, events)
        return OperationResult(appointment, events.events, [case])

    def approve_appointment(
        self, appointment_id: str, now: int | None = None
    ) -> OperationResult[Appointment]:
        """Lawyer approves; a pending consultation-fee payment is created."""
        now = self._now(now)
        with self._command("approve_appointment", appointment_id=appointment_id) as (tx, events):
            appointment = self.appointments.approve(tx, appointment_id, now, events)
            lawyer = appointment.lawyer_name or "your lawyer"
            payment = self.ledger.create(
                tx,
                ParentRef.appointment(appointment.id),
                PaymentType.CONSULTATION_FEE,
                appointment.consultation_fee,
                appointment.payment_deadline,
                now,
                events,
                client_id=appointment.client_id,
                lawyer_id=appointment.lawyer_id,
                description=f"Consultation fee for appointment with {lawyer}",
            )
            appointment.payment_id = payment.id
            tx.put(appointment)
        return OperationResult(appointment, events.events, [payment])

    def decline_appointment(
        self, appointment_id: str, reason: str = "", now: int | None = None
    ) -> OperationResult[Appointment]:
        now = self._now(now)
        with self._command("decline_appointment", appointment_id=appointment_id) as (tx, events):
            appointment = self.appointments.decline(tx, appointment_id, reason, now, events)
        return OperationResult(appointment, events.events)

    def confirm_payment(
        self, payment_id: str, paid_at: int | None = None
    ) -> OperationResult[BaseModel]:
        """Settle a pending payment and update its parent.

        For a consultation fee the appointment becomes ``CONFIRMED``; for a
        case fee the amount is credited to the case. ``paid_at`` is the
        effective time of the payment event. A consultation payment at or
        after the deadline loses to the expiry: the appointment and payment
        are expired and ``DeadlineExceeded`` is raised.
        """
        now = self.clock.now_ms()
        paid_at = now if paid_at is None else paid_at
        try:
            with self._command("confirm_payment", payment_id=payment_id) as (tx, events):
                payment = tx.require(Payment, payment_id)
                if payment.appointment_id is not None:
                    payment = self.ledger.confirm(tx, payment_id, paid_at, events)
                    entity: BaseModel = self.appointments.confirm(
                        tx, payment.appointment_id, paid_at, events
                    )
                else:
                    case = tx.require(Case, payment.case_id)
                    if case.status.is_terminal:
                        raise CaseClosedError(case.id, case.status.value)
                    payment = self.ledger.confirm(tx, payment_id, paid_at, events)
                    entity = self.cases.record_payment(tx, case.id, payment, paid_at, events)
        except DeadlineExceeded as e:
            late = self.store.get(Payment, payment_id)
            if late is not None and late.appointment_id is not None:
                self.expire_payment(late.appointment_id, now=max(now, e.deadline))
            raise
        return OperationResult(entity, events.events, [payment])

    def record_payment(
        self, payment_id: str, paid_at: int | None = None
    ) -> OperationResult[BaseModel]:
        """Credit a case-fee payment. Same as ``confirm_payment``."""
        return self.confirm_payment(payment_id, paid_at)

    def expire_approval(
        self, appointment_id: str, now: int | None = None
    ) -> OperationResult[Appointment]:
        """Expire an unanswered request. Idempotent."""
        now = self._now(now)
        with self._command("expire_approval", appointment_id=appointment_id) as (tx, events):
            appointment = self.appointments.expire_approval(tx, appointment_id, now, events)
        return OperationResult(appointment, events.events)

    def expire_payment(
        self, appointment_id: str, now: int | None = None
    ) -> OperationResult[Appointment]:
        """Expire an unpaid approved appointment and its payment. Idempotent."""
        now = self._now(now)
        related: list[BaseModel] = []
        with self._command("expire_payment", appointment_id=appointment_id) as (tx, events):
            appointment = self.appointments.expire_payment(tx, appointment_id, now, events)
            if appointment.status == AppointmentStatus.PAYMENT_EXPIRED:
                for payment in self.ledger.payments_for_appointment(tx, appointment.id):
                    if payment.is_pending:
                        related.append(
                            self.ledger.expire(tx, payment.id, appointment.expired_at, events)
                        )
        return OperationResult(appointment, events.events, related)

    def cancel_appointment(
        self, appointment_id: str, reason: str = "", now: int | None = None
    ) -> OperationResult[Appointment]:
        """Client cancels a pending or confirmed appointment."""
        now = self._now(now)
        policy = self.config.cancellation
        related: list[BaseModel] = []
        with self._command("cancel_appointment", appointment_id=appointment_id) as (tx, events):
            appointment = self.appointments.cancel(tx, appointment_id, reason, now, events)
            for payment in self.ledger.payments_for_appointment(tx, appointment.id):
                if payment.is_pending and policy.void_pending_payment:
                    related.append(self.ledger.expire(tx, payment.id, now, events))
                elif payment.status == PaymentStatus.SUCCESS and policy.refund_confirmed_payment:
                    related.append(self.ledger.refund(tx, payment.id, now, events))
        return OperationResult(appointment, events.events, related)

    def complete_appointment(
        self, appointment_id: str, now: int | None = None
    ) -> OperationResult[Appointment]:
        now = self._now(now)
        with self._command("complete_appointment", appointment_id=appointment_id) as (tx, events):
            appointment = self.appointments.complete(tx, appointment_id, now, events)
        return OperationResult(appointment, events.events)

    # ── Payments ─────────────────────────────────────────────

    def fail_payment(
        self, payment_id: str, reason: str = "", now: int | None = None
    ) -> OperationResult[Payment]:
        """Record a declined charge. The parent keeps waiting for a retry."""
        now = self._now(now)
        with self._command("fail_payment", payment_id=payment_id) as (tx, events):
            payment = self.ledger.fail(tx, payment_id, reason, now, events)
        return OperationResult(payment, events.events)

    def retry_payment(
        self, failed_payment_id: str, now: int | None = None
    ) -> OperationResult[Payment]:
        """Open a new payment replacing a failed one.

        The replacement keeps the original amount and deadline.
        """
        now = self._now(now)
        with self._command("retry_payment", payment_id=failed_payment_id) as (tx, events):
            failed = tx.require(Payment, failed_payment_id)
            if failed.status != PaymentStatus.FAILED:
                raise InvalidTransition(
                    "payment", failed.id, failed.status.value, "retry",
                    reason="only failed payments can be retried",
                )

            if failed.appointment_id is not None:
                parent: Appointment | Case = tx.require(Appointment, failed.appointment_id)
                if parent.status != AppointmentStatus.APPROVED_AWAITING_PAYMENT:
                    raise InvalidTransition(
                        "appointment", parent.id, parent.status.value, "retry payment for"
                    )
                if is_past(parent.payment_deadline, now):
                    raise DeadlineExceeded("appointment", parent.id, parent.payment_deadline, now)
                parent_ref = ParentRef.appointment(parent.id)
            else:
                parent = tx.require(Case, failed.case_id)
                if parent.status.is_terminal:
                    raise CaseClosedError(parent.id, parent.status.value)
                if parent.status not in (CaseStatus.PAYMENT_PENDING, CaseStatus.OVERDUE):
                    raise InvalidTransition(
                        "case", parent.id, parent.status.value, "retry payment for"
                    )
                parent_ref = ParentRef.case(parent.id)

            payment = self.ledger.create(
                tx,
                parent_ref,
                failed.type,
                failed.amount,
                failed.deadline,
                now,
                events,
                client_id=failed.client_id,
                lawyer_id=failed.lawyer_id,
                description=failed.description,
                retry_of=failed.id,
            )
            if isinstance(parent, Appointment):
                parent.payment_id = payment.id
            else:
                parent.pending_payment_id = payment.id
            tx.put(parent)
        return OperationResult(payment, events.events, [parent])

    def refund_payment(
        self, payment_id: str, now: int | None = None
    ) -> OperationResult[Payment]:
        """Refund a successful payment; case totals are adjusted."""
        now = self._now(now)
        related: list[BaseModel] = []
        with self._command("refund_payment", payment_id=payment_id) as (tx, events):
            payment = self.ledger.refund(tx, payment_id, now, events)
            if payment.case_id is not None:
                related.append(
                    self.cases.reverse_payment(tx, payment.case_id, payment, now, events)
                )
        return OperationResult(payment, events.events, related)

    # ── Cases ────────────────────────────────────────────────

    def open_case(self, request: CaseCreate, now: int | None = None) -> OperationResult[Case]:
        """Create a case directly."""
        now = self._now(now)
        with self._command("open_case") as (tx, events):
            case = self.cases.open(tx, request, now, events)
        return OperationResult(case, events.events)

    def start_case(
        self, appointment_id: str, request: CaseCreate, now: int | None = None
    ) -> OperationResult[Case]:
        """Create a case from a completed consultation."""
        now = self._now(now)
        with self._command("start_case", appointment_id=appointment_id) as (tx, events):
            appointment = tx.require(Appointment, appointment_id)
            case = self.cases.open(tx, request, now, events, appointment=appointment)
        return OperationResult(case, events.events)

    def request_case_payment(
        self,
        case_id: str,
        amount: int,
        deadline: int | None = None,
        description: str | None = None,
        now: int | None = None,
    ) -> OperationResult[Case]:
        """Bill a case fee; the case waits on a pending case-fee payment.

        ``deadline`` defaults to the configured case payment window.
        """
        now = self._now(now)
        if deadline is None:
            deadline = now + self.config.time_windows.case_payment_window_ms
        with self._command("request_case_payment", case_id=case_id) as (tx, events):
            case = self.cases.request_payment(tx, case_id, amount, deadline, now, events)
            payment = self.ledger.create(
                tx,
                ParentRef.case(case.id),
                PaymentType.CASE_FEE,
                amount,
                deadline,
                now,
                events,
                client_id=case.client_id,
                lawyer_id=case.lawyer_id,
                description=description or "Additional case fee",
            )
            case.pending_payment_id = payment.id
            tx.put(case)
        return OperationResult(case, events.events, [payment])

    def expire_payment_window(
        self, case_id: str, now: int | None = None
    ) -> OperationResult[Case]:
        """Mark an unpaid case overdue. Idempotent."""
        now = self._now(now)
        with self._command("expire_payment_window", case_id=case_id) as (tx, events):
            case = self.cases.expire_payment_window(tx, case_id, now, events)
        return OperationResult(case, events.events)

    def add_document(
        self, case_id: str, upload: DocumentUpload, now: int | None = None
    ) -> OperationResult[Case]:
        now = self._now(now)
        with self._command("add_document", case_id=case_id) as (tx, events):
            case, document = self.cases.append_document(tx, case_id, upload, now, events)
        return OperationResult(case, events.events, [document])

    def remove_document(
        self, case_id: str, document_id: str, now: int | None = None
    ) -> OperationResult[Case]:
        now = self._now(now)
        with self._command("remove_document", case_id=case_id) as (tx, events):
            case = self.cases.remove_document(tx, case_id, document_id, now, events)
        return OperationResult(case, events.events)

    def add_message(
        self,
        case_id: str,
        text: str,
        sender: Party = Party.CLIENT,
        sender_name: str | None = None,
        now: int | None = None,
    ) -> OperationResult[Case]:
        now = self._now(now)
        with self._command("add_message", case_id=case_id) as (tx, events):
            case, message = self.cases.append_message(
                tx, case_id, text, sender, now, events, sender_name=sender_name
            )
        return OperationResult(case, events.events, [message])

    def update_progress(
        self, case_id: str, progress: int, now: int | None = None
    ) -> OperationResult[Case]:
        now = self._now(now)
        with self._command("update_progress", case_id=case_id) as (tx, events):
            case = self.cases.update_progress(tx, case_id, progress, now, events)
        return OperationResult(case, events.events)

    def terminate_case(
        self,
        case_id: str,
        reason_category: TerminationReason | str,
        detail: str | None = None,
        initiated_by: Party = Party.CLIENT,
        now: int | None = None,
    ) -> OperationResult[Case]:
        """End a case early; any outstanding fee request is voided."""
        now = self._now(now)
        with self._command("terminate_case", case_id=case_id) as (tx, events):
            case = self.cases.terminate(
                tx, case_id, reason_category, detail, initiated_by, now, events
            )
            related = self._void_case_payments(tx, case, now, events)
        return OperationResult(case, events.events, related)

    def close_case(self, case_id: str, now: int | None = None) -> OperationResult[Case]:
        """Close a resolved case; any outstanding fee request is voided."""
        now = self._now(now)
        with self._command("close_case", case_id=case_id) as (tx, events):
            case = self.cases.close(tx, case_id, now, events)
            related = self._void_case_payments(tx, case, now, events)
        return OperationResult(case, events.events, related)

    def _void_case_payments(
        self, tx: Transaction, case: Case, now: int, events: EventBuffer
    ) -> list[BaseModel]:
        voided: list[BaseModel] = []
        for payment in self.ledger.payments_for_case(tx, case.id):
            if payment.is_pending:
                voided.append(self.ledger.expire(tx, payment.id, now, events))
        if case.pending_payment_id is not None:
            case.pending_payment_id = None
            tx.put(case)
        return voided

    # ── Configuration ────────────────────────────────────────

    def update_time_windows(self, now: int | None = None, **changes: float) -> TimeWindows:
        """Change deadline windows. Existing deadlines are not moved."""
        now = self._now(now)
        try:
            windows = TimeWindows(**{**self.config.time_windows.model_dump(), **changes})
        except pydantic.ValidationError as e:
            fields = {".".join(str(p) for p in err["loc"]): err["msg"] for err in e.errors()}
            raise ValidationError("Invalid time windows", fields) from e

        with self._command("update_time_windows") as (tx, events):
            self.config = self.config.model_copy(update={"time_windows": windows})
            self.appointments.config = self.config
            events.emit(
                EventType.CONFIG_UPDATED,
                now,
                title="Config Updated",
                message="System time windows have been updated.",
                **windows.model_dump(),
            )
        logger.info("Time windows updated", **windows.model_dump())
        return windows

    # ── Deadlines ────────────────────────────────────────────

    def tick(self, now: int | None = None) -> list[OperationResult[BaseModel]]:
        """Apply every expiry that is due at ``now``.

        A deadline that fails to process is logged and retried next tick.
        Events a failing sink rejected earlier are resent first.
        """
        if self._undelivered:
            self.redeliver()
        now = self._now(now)
        results: list[OperationResult[BaseModel]] = []
        for deadline in self.tracker.due(now):
            try:
                if deadline.kind == DeadlineKind.APPROVAL:
                    result: OperationResult[Any] = self.expire_approval(deadline.entity_id, now)
                elif deadline.kind == DeadlineKind.APPOINTMENT_PAYMENT:
                    result = self.expire_payment(deadline.entity_id, now)
                else:
                    result = self.expire_payment_window(deadline.entity_id, now)
            except LifecycleError:
                logger.exception(
                    "Deadline processing failed",
                    kind=deadline.kind.value,
                    entity_id=deadline.entity_id,
                )
                continue
            self.tracker.mark_fired(deadline)
            results.append(result)

        if results:
            logger.info("Processed deadlines", count=len(results), now=now)
        return results

    async def run(self, interval_seconds: float | None = None) -> None:
        """Run the deadline tick loop until ``stop()`` is called."""
        interval = interval_seconds or self.config.tracker.tick_interval_seconds
        await self.tracker.run(self.tick, interval)

    def stop(self) -> None:
        self.tracker.stop()

    # ── Queries ──────────────────────────────────────────────

    def get_appointment(self, appointment_id: str) -> Appointment:
        return self._get(Appointment, appointment_id)

    def get_payment(self, payment_id: str) -> Payment:
        return self._get(Payment, payment_id)

    def get_case(self, case_id: str) -> Case:
        return self._get(Case, case_id)

    def _get(self, model: type[EntityT], entity_id: str) -> EntityT:
        entity = self.store.get(model, entity_id)
        if entity is None:
            raise NotFoundError(model.record_kind, entity_id)
        return entity

    def list_appointments(
        self,
        client_id: str | None = None,
        lawyer_id: str | None = None,
        status: AppointmentStatus | None = None,
        case_id: str | None = None,
    ) -> list[Appointment]:
        appointments = [
            a
            for a in self.store.list(Appointment)
            if (client_id is None or a.client_id == client_id)
            and (lawyer_id is None or a.lawyer_id == lawyer_id)
            and (status is None or a.status == status)
            and (case_id is None or a.case_id == case_id)
        ]
        return sorted(appointments, key=lambda a: a.created_at, reverse=True)

    def list_cases(
        self,
        client_id: str | None = None,
        lawyer_id: str | None = None,
        status: CaseStatus | None = None,
    ) -> list[Case]:
        cases = [
            c
            for c in self.store.list(Case)
            if (client_id is None or c.client_id == client_id)
            and (lawyer_id is None or c.lawyer_id == lawyer_id)
            and (status is None or c.status == status)
        ]
        return sorted(cases, key=lambda c: c.created_at, reverse=True)

    def list_payments(
        self,
        appointment_id: str | None = None,
        case_id: str | None = None,
        status: PaymentStatus | None = None,
    ) -> list[Payment]:
        payments = [
            p
            for p in self.store.list(Payment)
            if (appointment_id is None or p.appointment_id == appointment_id)
            and (case_id is None or p.case_id == case_id)
            and (status is None or p.status == status)
        ]
        return sorted(payments, key=lambda p: p.created_at, reverse=True)


def create_orchestrator(
    clock: Clock | None = None,
    sink: NotificationSink | None = None,
) -> LifecycleOrchestrator:
    """Build an orchestrator from environment settings and ``engine.yaml``."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    config = load_engine_config()
    if sink is None:
        sink = CompositeNotificationSink(
            InMemoryNotificationSink(config.notifications.max_retained),
            LoggingNotificationSink(),
        )
    logger.info(
        "Lifecycle engine configured",
        environment=settings.environment,
        storage_backend=settings.storage_backend,
    )
    return LifecycleOrchestrator(get_record_store(), clock=clock, sink=sink, config=config)
