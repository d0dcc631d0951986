"""Unit tests for the payment ledger."""

import pytest

from engagement.config.schemas import MS_PER_DAY, MS_PER_MINUTE
from engagement.errors import DeadlineExceeded, InvalidTransition, OverpaymentError, ValidationError
from engagement.ledger import PAYMENT_TRANSITIONS, PaymentLedger
from engagement.models.case import Case, CaseStatus
from engagement.models.events import EventType
from engagement.models.payment import ParentRef, Payment, PaymentStatus, PaymentType
from engagement.notifications import EventBuffer

P = PaymentStatus


@pytest.fixture
def ledger() -> PaymentLedger:
    return PaymentLedger()


@pytest.fixture
def billed_case(store, clock) -> Case:
    """Case with 20,000 billed and nothing collected."""
    case = Case(
        id="case-1",
        client_id="client-1",
        lawyer_id="lawyer-1",
        title="Lease review",
        case_type="Real Estate",
        status=CaseStatus.PAYMENT_PENDING,
        total_fees=20_000,
        next_payment_deadline=clock.now_ms() + 7 * MS_PER_DAY,
        created_at=clock.now_ms(),
    )
    with store.transaction() as tx:
        tx.put(case)
    return case


def _consultation_payment(ledger, store, clock, events=None) -> Payment:
    with store.transaction() as tx:
        return ledger.create(
            tx,
            ParentRef.appointment("apt-1"),
            PaymentType.CONSULTATION_FEE,
            5000,
            clock.now_ms() + 10 * MS_PER_MINUTE,
            clock.now_ms(),
            events or EventBuffer(),
        )


def _case_payment(ledger, store, clock, case, amount) -> Payment:
    with store.transaction() as tx:
        return ledger.create(
            tx,
            ParentRef.case(case.id),
            PaymentType.CASE_FEE,
            amount,
            case.next_payment_deadline,
            clock.now_ms(),
            EventBuffer(),
        )


class TestPaymentModel:
    """Tests for payment ownership rules."""

    def test_requires_exactly_one_parent(self):
        with pytest.raises(ValueError):
            Payment(
                id="pay-1",
                type=PaymentType.CASE_FEE,
                appointment_id="apt-1",
                case_id="case-1",
                amount=100,
                created_at=0,
            )
        with pytest.raises(ValueError):
            Payment(id="pay-2", type=PaymentType.CASE_FEE, amount=100, created_at=0)

    def test_settled_states_are_final(self):
        """Only SUCCESS -> REFUNDED remains after leaving PENDING."""
        assert set(PAYMENT_TRANSITIONS) == {P.PENDING, P.SUCCESS}
        assert PAYMENT_TRANSITIONS[P.SUCCESS] == {P.REFUNDED}


class TestCreate:
    """Tests for opening payments."""

    def test_create_pending(self, ledger, store, clock):
        events = EventBuffer()
        payment = _consultation_payment(ledger, store, clock, events)

        assert payment.status == P.PENDING
        assert payment.parent_id == "apt-1"
        assert store.get(Payment, payment.id) == payment
        assert events.events[0].type == EventType.PAYMENT_CREATED
        assert events.events[0].payment_id == payment.id

    def test_create_rejects_non_positive_amount(self, ledger, store, clock):
        with pytest.raises(ValidationError):
            with store.transaction() as tx:
                ledger.create(
                    tx,
                    ParentRef.appointment("apt-1"),
                    PaymentType.CONSULTATION_FEE,
                    0,
                    None,
                    clock.now_ms(),
                    EventBuffer(),
                )


class TestConfirm:
    """Tests for settling payments."""

    def test_confirm_success(self, ledger, store, clock):
        payment = _consultation_payment(ledger, store, clock)
        paid_at = clock.advance(minutes=3)

        with store.transaction() as tx:
            confirmed = ledger.confirm(tx, payment.id, paid_at, EventBuffer())

        assert confirmed.status == P.SUCCESS
        assert confirmed.paid_at == paid_at

    def test_confirm_twice_rejected(self, ledger, store, clock):
        """Test a settled payment cannot be paid again."""
        payment = _consultation_payment(ledger, store, clock)
        with store.transaction() as tx:
            ledger.confirm(tx, payment.id, clock.now_ms(), EventBuffer())

        with pytest.raises(InvalidTransition) as exc_info:
            with store.transaction() as tx:
                ledger.confirm(tx, payment.id, clock.now_ms(), EventBuffer())
        assert "already settled" in exc_info.value.message

    def test_consultation_fee_late_rejected(self, ledger, store, clock):
        payment = _consultation_payment(ledger, store, clock)

        with pytest.raises(DeadlineExceeded):
            with store.transaction() as tx:
                ledger.confirm(tx, payment.id, payment.deadline, EventBuffer())

        assert store.get(Payment, payment.id).status == P.PENDING

    def test_case_fee_payable_late(self, ledger, store, clock, billed_case):
        """Test case fees are still accepted after their deadline."""
        payment = _case_payment(ledger, store, clock, billed_case, 20_000)
        late = billed_case.next_payment_deadline + MS_PER_DAY

        with store.transaction() as tx:
            confirmed = ledger.confirm(tx, payment.id, late, EventBuffer())

        assert confirmed.status == P.SUCCESS

    def test_overpayment_rejected(self, ledger, store, clock, billed_case):
        first = _case_payment(ledger, store, clock, billed_case, 15_000)
        second = _case_payment(ledger, store, clock, billed_case, 10_000)
        with store.transaction() as tx:
            ledger.confirm(tx, first.id, clock.now_ms(), EventBuffer())

        with pytest.raises(OverpaymentError) as exc_info:
            with store.transaction() as tx:
                ledger.confirm(tx, second.id, clock.now_ms(), EventBuffer())

        assert exc_info.value.allowed == 5_000
        assert exc_info.value.attempted == 10_000


class TestSettlementOutcomes:
    """Tests for expiry, failure and refunds."""

    def test_expire_idempotent(self, ledger, store, clock):
        payment = _consultation_payment(ledger, store, clock)
        events = EventBuffer()
        for _ in range(2):
            with store.transaction() as tx:
                ledger.expire(tx, payment.id, payment.deadline, events)

        expired = store.get(Payment, payment.id)
        assert expired.status == P.EXPIRED
        assert expired.expired_at == payment.deadline
        assert len(events.events) == 1

    def test_expire_leaves_success_alone(self, ledger, store, clock):
        payment = _consultation_payment(ledger, store, clock)
        with store.transaction() as tx:
            ledger.confirm(tx, payment.id, clock.now_ms(), EventBuffer())
            result = ledger.expire(tx, payment.id, payment.deadline, EventBuffer())

        assert result.status == P.SUCCESS

    def test_fail_records_reason(self, ledger, store, clock):
        payment = _consultation_payment(ledger, store, clock)
        with store.transaction() as tx:
            failed = ledger.fail(tx, payment.id, "Card declined", clock.now_ms(), EventBuffer())

        assert failed.status == P.FAILED
        assert failed.failure_reason == "Card declined"

    def test_refund_requires_success(self, ledger, store, clock):
        payment = _consultation_payment(ledger, store, clock)
        with pytest.raises(InvalidTransition):
            with store.transaction() as tx:
                ledger.refund(tx, payment.id, clock.now_ms(), EventBuffer())

    def test_net_paid_excludes_refunds(self, ledger, store, clock, billed_case):
        first = _case_payment(ledger, store, clock, billed_case, 12_000)
        second = _case_payment(ledger, store, clock, billed_case, 8_000)
        with store.transaction() as tx:
            ledger.confirm(tx, first.id, clock.now_ms(), EventBuffer())
            ledger.confirm(tx, second.id, clock.now_ms(), EventBuffer())
            ledger.refund(tx, first.id, clock.now_ms(), EventBuffer())

            assert ledger.net_paid(tx, billed_case.id) == 8_000
