"""Synchronous event bus for plugin and runtime notifications."""

from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
import uuid

from .logger import get_logger

logger = get_logger(__name__)


@dataclass
class Event:
    """Record of an emitted event."""

    name: str
    payload: Any
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=datetime.now)
    delivered: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary."""
        return {
            "event_id": self.event_id,
            "name": self.name,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
            "delivered": self.delivered,
        }


def _noop() -> None:
    return None


def _normalize_name(event_name: Any) -> str:
    if event_name is None:
        return ""
    return str(event_name)


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class EventBus:
    """Publish/subscribe bus with synchronous, snapshot-based dispatch.

    Handlers run in subscription order on the caller's stack. A handler that
    raises is logged and skipped; it never reaches the caller of ``emit``.
    """

    def __init__(self, max_history: int = 200):
        self._subscribers: Dict[str, List[Callable]] = {}
        self._event_history: List[Event] = []
        self._max_history = max_history

    def on(self, event_name: str, handler: Callable[[Any], Any]) -> Callable[[], None]:
        """
        Subscribe to an event.

        Args:
            event_name: Name of the event to subscribe to
            handler: Callable invoked with the event payload

        Returns:
            Idempotent unsubscribe callable
        """
        name = _normalize_name(event_name)
        if not name or not callable(handler):
            return _noop

        self._subscribers.setdefault(name, []).append(handler)
        logger.debug("Subscribed to event", event_name=name, handler=_handler_name(handler))

        def unsubscribe() -> None:
            self.off(name, handler)

        return unsubscribe

    def off(self, event_name: str, handler: Callable[[Any], Any]) -> None:
        """
        Unsubscribe a handler from an event.

        Args:
            event_name: Name of the event
            handler: Handler to remove
        """
        name = _normalize_name(event_name)
        handlers = self._subscribers.get(name)
        if not handlers:
            return

        remaining = [h for h in handlers if h is not handler]
        if remaining:
            self._subscribers[name] = remaining
        else:
            del self._subscribers[name]

    def emit(self, event_name: str, payload: Any = None) -> int:
        """
        Emit an event to all current subscribers.

        Args:
            event_name: Name of the event
            payload: Event payload passed to every handler

        Returns:
            Number of handlers that completed without raising
        """
        name = _normalize_name(event_name)
        if not name:
            return 0

        event = Event(name=name, payload=payload)
        self._record(event)

        handlers = list(self._subscribers.get(name, ()))
        for handler in handlers:
            try:
                handler(payload)
                event.delivered += 1
            except Exception as e:
                logger.error(
                    "Error in event subscriber",
                    event_name=name,
                    subscriber=_handler_name(handler),
                    error=str(e),
                    exc_info=True
                )

        return event.delivered

    def _record(self, event: Event) -> None:
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history.pop(0)

    def get_subscribers(self, event_name: Optional[str] = None) -> List[Callable]:
        """Get list of subscribers for an event (or all events)."""
        if event_name is None:
            all_subscribers: List[Callable] = []
            for subscribers in self._subscribers.values():
                all_subscribers.extend(subscribers)
            return all_subscribers
        return list(self._subscribers.get(_normalize_name(event_name), ()))

    def get_event_history(self, limit: int = 100) -> List[Event]:
        """Get recent event history."""
        return self._event_history[-limit:]

    def clear_history(self) -> None:
        """Clear event history."""
        self._event_history.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get event bus statistics."""
        return {
            "event_types": len(self._subscribers),
            "total_subscribers": sum(len(subs) for subs in self._subscribers.values()),
            "history_size": len(self._event_history),
        }
