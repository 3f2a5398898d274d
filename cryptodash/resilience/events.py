"""Notification events emitted by the resilience layer.

The fetch path never renders anything itself. It emits events, and the UI
layer subscribes to decide how (or whether) to show a notification.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

logger = logging.getLogger("resilience.events")


class EventType(Enum):
    RATE_LIMIT_WARNING = "rate_limit_warning"
    TERMINAL_FAILURE = "terminal_failure"


@dataclass
class Notification:
    """A request that the UI show a transient notification."""
    event: EventType
    variant: str  # "warning" or "destructive"
    title: str
    description: str
    identity: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "event": self.event.value,
            "variant": self.variant,
            "title": self.title,
            "description": self.description,
            "identity": self.identity,
            "timestamp": self.timestamp,
        }


Listener = Callable[[Notification], None]


class ResilienceEvents:
    """Simple synchronous publish/subscribe hub for notifications."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._listeners: Dict[EventType, List[Listener]] = {
            event: [] for event in EventType
        }

    def subscribe(self, event: EventType, listener: Listener) -> Callable[[], None]:
        """
        Register a listener for one event type.

        Returns:
            A callable that removes the listener again
        """
        self._listeners[event].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

        return unsubscribe

    def on_rate_limit_warning(self, listener: Listener) -> Callable[[], None]:
        return self.subscribe(EventType.RATE_LIMIT_WARNING, listener)

    def on_terminal_failure(self, listener: Listener) -> Callable[[], None]:
        return self.subscribe(EventType.TERMINAL_FAILURE, listener)

    def emit(self, notification: Notification) -> None:
        """Deliver a notification to every listener of its type."""
        for listener in list(self._listeners[notification.event]):
            try:
                listener(notification)
            except Exception as e:
                # A broken UI listener must not break the fetch path
                logger.warning(f"Notification listener failed: {e}")

    def rate_limit_warning(self, description: str, identity: Optional[str] = None) -> None:
        self.emit(Notification(
            event=EventType.RATE_LIMIT_WARNING,
            variant="warning",
            title="API Rate Limit",
            description=description,
            identity=identity,
            timestamp=self._clock(),
        ))

    def terminal_failure(self, description: str, identity: Optional[str] = None) -> None:
        self.emit(Notification(
            event=EventType.TERMINAL_FAILURE,
            variant="destructive",
            title="Error",
            description=description,
            identity=identity,
            timestamp=self._clock(),
        ))
