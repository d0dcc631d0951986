"""Payment ledger.

Tracks each fee's collection outcome. A payment is mutable only while
``PENDING``; after that the single remaining move is ``SUCCESS -> REFUNDED``.
A failed payment is retried by creating a new payment, never by reviving
the failed one.
"""

import structlog

from engagement.errors import (
    DeadlineExceeded,
    InvalidTransition,
    OverpaymentError,
    ValidationError,
)
from engagement.models.case import Case
from engagement.models.events import EventLevel, EventType
from engagement.models.payment import ParentRef, Payment, PaymentStatus, PaymentType
from engagement.notifications import EventBuffer
from engagement.store.base import Transaction
from engagement.utils.ids import new_id
from engagement.utils.timeutil import is_past

logger = structlog.get_logger()

P = PaymentStatus

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    P.PENDING: frozenset({P.SUCCESS, P.FAILED, P.EXPIRED}),
    P.SUCCESS: frozenset({P.REFUNDED}),
}


def _move(payment: Payment, target: PaymentStatus, action: str) -> None:
    if target not in PAYMENT_TRANSITIONS.get(payment.status, frozenset()):
        raise InvalidTransition("payment", payment.id, payment.status.value, action)
    logger.info(
        "Payment transition",
        payment_id=payment.id,
        from_status=payment.status.value,
        to_status=target.value,
        amount=payment.amount,
    )
    payment.status = target


class PaymentLedger:
    """Creates payments and records their outcomes."""

    # Case fees stay payable after their deadline; lateness shows up as the
    # case going OVERDUE instead.
    LATE_PAYABLE_TYPES = frozenset({PaymentType.CASE_FEE})

    def create(
        self,
        tx: Transaction,
        parent: ParentRef,
        payment_type: PaymentType,
        amount: int,
        deadline: int | None,
        now: int,
        events: EventBuffer,
        *,
        client_id: str | None = None,
        lawyer_id: str | None = None,
        description: str | None = None,
        retry_of: str | None = None,
    ) -> Payment:
        """Open a pending payment against an appointment or a case."""
        if amount is None or amount <= 0:
            raise ValidationError("Invalid payment", {"amount": "must be a positive amount"})

        payment = Payment(
            id=new_id("pay"),
            type=payment_type,
            appointment_id=parent.appointment_id,
            case_id=parent.case_id,
            client_id=client_id,
            lawyer_id=lawyer_id,
            description=description,
            amount=amount,
            status=P.PENDING,
            created_at=now,
            deadline=deadline,
            retry_of=retry_of,
        )
        tx.put(payment)

        events.emit(
            EventType.PAYMENT_CREATED,
            now,
            title="Payment Requested",
            message=description or f"Payment of {amount:,} is due.",
            appointment_id=payment.appointment_id,
            payment_id=payment.id,
            case_id=payment.case_id,
            amount=amount,
            deadline=deadline,
        )
        return payment

    def confirm(
        self, tx: Transaction, payment_id: str, paid_at: int, events: EventBuffer
    ) -> Payment:
        """Record a successful collection.

        Raises:
            InvalidTransition: If the payment is no longer pending
            DeadlineExceeded: If a deadline-bound payment arrives too late
            OverpaymentError: If a case would collect more than it billed
        """
        payment = tx.require(Payment, payment_id)
        if not payment.is_pending:
            raise InvalidTransition(
                "payment", payment.id, payment.status.value, "confirm",
                reason="payment already settled",
            )
        if payment.type not in self.LATE_PAYABLE_TYPES and is_past(payment.deadline, paid_at):
            raise DeadlineExceeded("payment", payment.id, payment.deadline, paid_at)

        if payment.case_id is not None:
            case = tx.require(Case, payment.case_id)
            allowed = case.total_fees - self.net_paid(tx, case.id)
            if payment.amount > allowed:
                raise OverpaymentError(case.id, payment.amount, max(0, allowed))

        _move(payment, P.SUCCESS, "confirm")
        payment.paid_at = paid_at
        tx.put(payment)

        events.emit(
            EventType.PAYMENT_SUCCEEDED,
            paid_at,
            title="Payment Successful",
            message=f"Payment of {payment.amount:,} has been confirmed.",
            level=EventLevel.SUCCESS,
            appointment_id=payment.appointment_id,
            payment_id=payment.id,
            case_id=payment.case_id,
            amount=payment.amount,
        )
        return payment

    def expire(
        self,
        tx: Transaction,
        payment_id: str,
        at: int,
        events: EventBuffer,
    ) -> Payment:
        """Void a pending payment. Settled payments are left untouched."""
        payment = tx.require(Payment, payment_id)
        if not payment.is_pending:
            return payment

        _move(payment, P.EXPIRED, "expire")
        payment.expired_at = at
        tx.put(payment)

        events.emit(
            EventType.PAYMENT_EXPIRED,
            at,
            title="Payment Expired",
            message="The payment window closed before payment was received.",
            level=EventLevel.WARNING,
            appointment_id=payment.appointment_id,
            payment_id=payment.id,
            case_id=payment.case_id,
        )
        return payment

    def fail(
        self,
        tx: Transaction,
        payment_id: str,
        reason: str,
        now: int,
        events: EventBuffer,
    ) -> Payment:
        payment = tx.require(Payment, payment_id)
        _move(payment, P.FAILED, "fail")
        payment.failed_at = now
        payment.failure_reason = reason or ""
        tx.put(payment)

        events.emit(
            EventType.PAYMENT_FAILED,
            now,
            title="Payment Failed",
            message=f"Payment could not be completed.{f' {reason}' if reason else ''}",
            level=EventLevel.ERROR,
            appointment_id=payment.appointment_id,
            payment_id=payment.id,
            case_id=payment.case_id,
        )
        return payment

    def refund(
        self, tx: Transaction, payment_id: str, now: int, events: EventBuffer
    ) -> Payment:
        payment = tx.require(Payment, payment_id)
        _move(payment, P.REFUNDED, "refund")
        payment.refunded_at = now
        tx.put(payment)

        events.emit(
            EventType.PAYMENT_REFUNDED,
            now,
            title="Payment Refunded",
            message=f"Payment of {payment.amount:,} has been refunded.",
            appointment_id=payment.appointment_id,
            payment_id=payment.id,
            case_id=payment.case_id,
            amount=payment.amount,
        )
        return payment

    def payments_for_appointment(self, tx: Transaction, appointment_id: str) -> list[Payment]:
        payments = [p for p in tx.list(Payment) if p.appointment_id == appointment_id]
        return sorted(payments, key=lambda p: p.created_at)

    def payments_for_case(self, tx: Transaction, case_id: str) -> list[Payment]:
        payments = [p for p in tx.list(Payment) if p.case_id == case_id]
        return sorted(payments, key=lambda p: p.created_at)

    def net_paid(self, tx: Transaction, case_id: str) -> int:
        """Amount currently held against a case.

        Refunded payments have left ``SUCCESS`` and no longer count.
        """
        return sum(
            p.amount for p in self.payments_for_case(tx, case_id) if p.status == P.SUCCESS
        )
