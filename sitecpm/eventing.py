# sitecpm/eventing.py
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List

from sitecpm.utils import utc_now

logger = logging.getLogger(__name__)

SCHEDULE_GENERATED = "schedule_generated"
SCHEDULE_OPTIMIZED = "schedule_optimized"
PROGRESS_RECORDED = "progress_recorded"
WEATHER_ALERT = "weather_alert"


@dataclass
class Event:
    event_type: str
    payload: dict = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utc_now)

    @property
    def schedule_id(self):
        return self.payload.get("schedule_id")


Listener = Callable[[Event], None]


class EventManager:
    """
    Synchronous in-process dispatch. Listeners run in registration order and a
    failing listener is logged without stopping the others or the caller.
    """

    def __init__(self):
        self.listeners: Dict[str, List[Listener]] = defaultdict(list)

    def add_listener(self, event_type: str, listener: Listener):
        if listener not in self.listeners[event_type]:
            self.listeners[event_type].append(listener)

    def emit(self, event: Event) -> int:
        """Returns how many listeners handled the event without raising."""
        handled = 0
        listeners = list(self.listeners.get(event.event_type, ()))
        logger.debug(
            "emitting %s for schedule %s to %d listener(s)", event.event_type, event.schedule_id, len(listeners)
        )
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("listener %s failed on %s", getattr(listener, "__name__", listener), event.event_type)
                continue
            handled += 1
        return handled


# Shared by the CLI and the batch jobs; tests build their own.
event_manager = EventManager()
