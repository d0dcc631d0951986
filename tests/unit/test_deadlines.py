"""Unit tests for deadline tracking and countdown utilities."""

import asyncio

import pytest

from engagement.config.schemas import MS_PER_HOUR, MS_PER_MINUTE, MS_PER_SECOND
from engagement.deadlines import DeadlineKind
from engagement.models.appointment import AppointmentStatus
from engagement.models.events import EventType
from engagement.utils.timeutil import (
    create_deadline,
    format_countdown,
    format_payment_countdown,
    is_past,
    time_remaining,
    urgency_level,
)


class TestTimeUtilities:
    """Tests for deadline arithmetic and formatting."""

    def test_create_deadline(self):
        assert create_deadline(0, 24, "hours") == 24 * MS_PER_HOUR
        assert create_deadline(1000, 10, "minutes") == 1000 + 10 * MS_PER_MINUTE

    def test_create_deadline_unknown_unit(self):
        with pytest.raises(ValueError):
            create_deadline(0, 1, "weeks")

    def test_is_past_inclusive(self):
        """Test reaching the deadline counts as past."""
        assert is_past(100, 100)
        assert not is_past(100, 99)
        assert not is_past(None, 10**15)

    def test_time_remaining_breakdown(self):
        r = time_remaining(26 * MS_PER_HOUR + 5 * MS_PER_MINUTE + 7 * MS_PER_SECOND, 0)
        assert (r.days, r.hours, r.minutes, r.seconds) == (1, 2, 5, 7)
        assert not r.expired
        assert time_remaining(0, 5).expired

    def test_format_countdown(self):
        assert format_countdown(26 * MS_PER_HOUR, 0) == "1d 2h"
        assert format_countdown(90 * MS_PER_MINUTE, 0) == "1h 30m"
        assert format_countdown(45 * MS_PER_SECOND, 0) == "45s"
        assert format_countdown(0, 1) == "Expired"

    def test_format_payment_countdown(self):
        assert format_payment_countdown(9 * MS_PER_MINUTE + 5 * MS_PER_SECOND, 0) == "09:05"
        assert format_payment_countdown(0, 0) == "00:00"

    def test_urgency_levels(self):
        window = 100 * MS_PER_SECOND
        assert urgency_level(window, window, 0) == "normal"
        assert urgency_level(window, window, 60 * MS_PER_SECOND) == "warning"
        assert urgency_level(window, window, 85 * MS_PER_SECOND) == "critical"
        assert urgency_level(window, window, window) == "expired"


class TestDeadlineTracker:
    """Tests for the deadline tracker."""

    def test_live_deadlines_follow_state(self, engine, clock, booking_request):
        """Test a deadline disappears once its entity leaves the guarded state."""
        apt = engine.book_appointment(booking_request).entity
        kinds = [d.kind for d in engine.tracker.live_deadlines()]
        assert kinds == [DeadlineKind.APPROVAL]

        engine.approve_appointment(apt.id)
        deadlines = engine.tracker.live_deadlines()
        assert [d.kind for d in deadlines] == [DeadlineKind.APPOINTMENT_PAYMENT]
        assert deadlines[0].duration == 10 * MS_PER_MINUTE

        engine.decline_appointment(engine.book_appointment(booking_request).entity.id)
        assert len(engine.tracker.live_deadlines()) == 1

    def test_due_only_after_deadline(self, engine, clock, booking_request):
        apt = engine.book_appointment(booking_request).entity
        assert engine.tracker.due(apt.approval_deadline - 1) == []
        assert [d.entity_id for d in engine.tracker.due(apt.approval_deadline)] == [apt.id]

    def test_fired_deadline_not_repeated(self, engine, clock, booking_request):
        engine.book_appointment(booking_request)
        clock.advance(hours=25)

        assert len(engine.tick()) == 1
        assert engine.tick() == []

    def test_fired_keys_pruned_once_resolved(self, engine, clock, booking_request):
        """Test the fired set only holds deadlines that are still live."""
        engine.book_appointment(booking_request)
        clock.advance(hours=25)
        engine.tick()
        engine.tick()

        assert engine.tracker._fired == set()

        engine.book_appointment(booking_request)
        clock.advance(hours=25)
        assert len(engine.tick()) == 1

    def test_urgency(self, engine, clock, booking_request):
        engine.book_appointment(booking_request)
        deadline = engine.tracker.live_deadlines()[0]

        assert engine.tracker.urgency(deadline) == "normal"
        clock.advance(hours=21)
        assert engine.tracker.urgency(deadline) == "critical"
        assert engine.tracker.remaining(deadline.deadline).hours == 3

    def test_tick_is_idempotent_per_entity(self, engine, clock, sink, booking_request):
        """Test repeated expiry calls do not emit duplicate events."""
        apt = engine.book_appointment(booking_request).entity
        clock.advance(hours=24)

        engine.tick()
        engine.expire_approval(apt.id)
        engine.expire_approval(apt.id)

        assert len(sink.of_type(EventType.APPOINTMENT_EXPIRED)) == 1
        assert engine.get_appointment(apt.id).status == AppointmentStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_run_loop_expires_in_background(self, engine, clock, booking_request):
        apt = engine.book_appointment(booking_request).entity
        engine.approve_appointment(apt.id)

        task = asyncio.create_task(engine.run(interval_seconds=60))
        for _ in range(100):
            await asyncio.sleep(0)
            if engine.get_appointment(apt.id).status == AppointmentStatus.PAYMENT_EXPIRED:
                break
        assert engine.tracker.is_running

        engine.stop()
        await asyncio.wait_for(task, timeout=1)

        assert not engine.tracker.is_running
        assert engine.get_appointment(apt.id).status == AppointmentStatus.PAYMENT_EXPIRED
