"""Lifecycle event buffering and notification sinks."""

from abc import ABC, abstractmethod
from collections import Counter, OrderedDict
from collections.abc import Iterable
from typing import Any

import orjson
import structlog

from engagement.models.events import EventLevel, EventType, LifecycleEvent
from engagement.utils.hashing import compute_event_id

logger = structlog.get_logger()


class EventBuffer:
    """Collects events raised while a command is in flight.

    Events are only handed to a sink once the command's transaction has
    committed, so a rolled-back command never notifies anyone.
    """

    def __init__(self) -> None:
        self.events: list[LifecycleEvent] = []
        self._seq: Counter[tuple[str, str, int]] = Counter()

    def emit(
        self,
        event_type: EventType,
        at: int,
        *,
        title: str,
        message: str = "",
        level: EventLevel = EventLevel.INFO,
        appointment_id: str | None = None,
        payment_id: str | None = None,
        case_id: str | None = None,
        **data: Any,
    ) -> LifecycleEvent:
        domain = event_type.value.split(".", 1)[0]
        subject = {
            "appointment": appointment_id,
            "payment": payment_id,
            "case": case_id,
        }.get(domain) or appointment_id or case_id or payment_id or "engine"

        detail = orjson.dumps(data, option=orjson.OPT_SORT_KEYS).decode() if data else ""
        key = (event_type.value, subject, at)
        seq = self._seq[key]
        self._seq[key] += 1

        event = LifecycleEvent(
            id=compute_event_id(event_type.value, subject, at, seq, detail),
            type=event_type,
            occurred_at=at,
            level=level,
            title=title,
            message=message,
            appointment_id=appointment_id,
            payment_id=payment_id,
            case_id=case_id,
            data=data,
        )
        self.events.append(event)
        return event


class NotificationSink(ABC):
    """Receives lifecycle events for display."""

    @abstractmethod
    def publish(self, events: Iterable[LifecycleEvent]) -> None:
        """Deliver committed events. May be called more than once per event."""


class InMemoryNotificationSink(NotificationSink):
    """Keeps the most recent notifications, newest first.

    Re-delivered events are recognised by id and dropped. Only the last
    ``dedup_window`` ids are remembered (ten times the retained count by
    default).
    """

    def __init__(self, max_retained: int = 50, dedup_window: int | None = None) -> None:
        self.max_retained = max_retained
        self.dedup_window = dedup_window or max_retained * 10
        self._notifications: list[LifecycleEvent] = []
        self._seen: OrderedDict[str, None] = OrderedDict()

    def publish(self, events: Iterable[LifecycleEvent]) -> None:
        for event in events:
            if event.id in self._seen:
                continue
            self._seen[event.id] = None
            self._notifications.insert(0, event)
        del self._notifications[self.max_retained :]
        while len(self._seen) > self.dedup_window:
            self._seen.popitem(last=False)

    @property
    def notifications(self) -> list[LifecycleEvent]:
        return list(self._notifications)

    def of_type(self, event_type: EventType) -> list[LifecycleEvent]:
        return [n for n in self._notifications if n.type == event_type]

    def dismiss(self, event_id: str) -> bool:
        """Remove one notification. Returns False if it wasn't present."""
        before = len(self._notifications)
        self._notifications = [n for n in self._notifications if n.id != event_id]
        return len(self._notifications) != before

    def clear(self) -> None:
        self._notifications.clear()


class LoggingNotificationSink(NotificationSink):
    """Writes every event to the structured log."""

    def publish(self, events: Iterable[LifecycleEvent]) -> None:
        for event in events:
            logger.info(
                event.title,
                event_id=event.id,
                event_type=event.type.value,
                severity=event.level.value,
                appointment_id=event.appointment_id,
                payment_id=event.payment_id,
                case_id=event.case_id,
            )


class CompositeNotificationSink(NotificationSink):
    """Fans events out to several sinks."""

    def __init__(self, *sinks: NotificationSink) -> None:
        self.sinks = list(sinks)

    def publish(self, events: Iterable[LifecycleEvent]) -> None:
        batch = list(events)
        for sink in self.sinks:
            sink.publish(batch)
