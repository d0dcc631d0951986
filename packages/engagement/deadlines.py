"""Deadline tracker.

Converts elapsed time into expiry signals. Deadlines live on the entities
as absolute epoch-millisecond timestamps, so the tracker holds no durable
state of its own: after a reload it rescans the store and compares each
guarded deadline with the current time. A deadline whose entity has left
the guarded state is treated as cancelled.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from engagement.clock import Clock
from engagement.models.appointment import Appointment, AppointmentStatus
from engagement.models.case import Case, CaseStatus
from engagement.store.base import RecordStore
from engagement.utils.timeutil import TimeRemaining, time_remaining, urgency_level

logger = structlog.get_logger()


class DeadlineKind(str, Enum):
    """Which transition a deadline guards."""

    APPROVAL = "approval"
    APPOINTMENT_PAYMENT = "appointment_payment"
    CASE_PAYMENT = "case_payment"


@dataclass(frozen=True)
class Deadline:
    """A live deadline and the state it guards."""

    kind: DeadlineKind
    entity_id: str
    deadline: int
    duration: int | None = None

    @property
    def key(self) -> tuple[str, str, int]:
        return (self.kind.value, self.entity_id, self.deadline)


class DeadlineTracker:
    """Finds due deadlines and signals each one once."""

    def __init__(self, store: RecordStore, clock: Clock) -> None:
        self.store = store
        self.clock = clock
        self._fired: set[tuple[str, str, int]] = set()
        self._running = False

    def live_deadlines(self) -> list[Deadline]:
        """Every deadline whose entity is still in the guarded state."""
        deadlines: list[Deadline] = []
        with self.store.transaction() as tx:
            for apt in tx.list(Appointment):
                if apt.status == AppointmentStatus.PENDING_LAWYER_APPROVAL:
                    deadlines.append(
                        Deadline(
                            DeadlineKind.APPROVAL,
                            apt.id,
                            apt.approval_deadline,
                            apt.approval_duration,
                        )
                    )
                elif (
                    apt.status == AppointmentStatus.APPROVED_AWAITING_PAYMENT
                    and apt.payment_deadline is not None
                ):
                    deadlines.append(
                        Deadline(
                            DeadlineKind.APPOINTMENT_PAYMENT,
                            apt.id,
                            apt.payment_deadline,
                            apt.payment_duration,
                        )
                    )
            for case in tx.list(Case):
                if (
                    case.status == CaseStatus.PAYMENT_PENDING
                    and case.next_payment_deadline is not None
                ):
                    deadlines.append(
                        Deadline(DeadlineKind.CASE_PAYMENT, case.id, case.next_payment_deadline)
                    )
        return sorted(deadlines, key=lambda d: d.deadline)

    def due(self, now: int | None = None) -> list[Deadline]:
        """Deadlines that have elapsed and were not yet signalled.

        Fired keys whose deadline is no longer live are forgotten here.
        """
        now = self.clock.now_ms() if now is None else now
        live = self.live_deadlines()
        self._fired &= {d.key for d in live}
        return [d for d in live if now >= d.deadline and d.key not in self._fired]

    def mark_fired(self, deadline: Deadline) -> None:
        self._fired.add(deadline.key)

    def remaining(self, deadline: int, now: int | None = None) -> TimeRemaining:
        now = self.clock.now_ms() if now is None else now
        return time_remaining(deadline, now)

    def urgency(self, deadline: Deadline, now: int | None = None) -> str:
        """Display urgency of a live deadline relative to its full window."""
        now = self.clock.now_ms() if now is None else now
        return urgency_level(deadline.deadline, deadline.duration or 0, now)

    async def run(self, on_tick: Callable[[int], Any], interval_seconds: float = 1.0) -> None:
        """Call ``on_tick(now)`` every interval until ``stop()`` is called.

        This should be run as an async task; it never blocks callers of
        the engine between ticks.
        """
        self._running = True
        logger.info("Deadline tracker started", interval_seconds=interval_seconds)
        while self._running:
            on_tick(self.clock.now_ms())
            await self.clock.sleep(interval_seconds)
        logger.info("Deadline tracker stopped")

    def stop(self) -> None:
        self._running = False

    @property
    def is_running(self) -> bool:
        """Check if the tick loop is running."""
        return self._running
