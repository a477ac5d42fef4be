"""Change notifications for real-time fan-out.

Services publish after they commit. Subscribers register per event type.
"""
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SeatUpdated:
    seat: dict


@dataclass(frozen=True)
class RoomUpdated:
    room: dict


@dataclass(frozen=True)
class SeatsUpdated:
    room_id: int
    seats: List[dict] = field(default_factory=list)


@dataclass(frozen=True)
class RoomDeleted:
    room_id: int


class EventBus:

    def __init__(self):
        self._lock = threading.Lock()
        self._handlers = defaultdict(list)

    def subscribe(self, event_type, handler):
        """Register ``handler`` for ``event_type``; returns an unsubscribe callable."""
        with self._lock:
            self._handlers[event_type].append(handler)

        def unsubscribe():
            with self._lock:
                if handler in self._handlers[event_type]:
                    self._handlers[event_type].remove(handler)

        return unsubscribe

    def publish(self, event):
        with self._lock:
            handlers = list(self._handlers[type(event)])

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                # the mutation is already committed
                logger.exception("Event handler %r failed for %s", handler, type(event).__name__)


def publish_all(bus: Optional[EventBus], events):
    if bus is None:
        return
    for event in events:
        bus.publish(event)
