"""
In-process publish/subscribe channel keyed by debate id.

Delivery is best-effort and live only: a subscriber sees events published
after it attached, never earlier ones.
"""

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from .models import now_iso

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]


class EventBus:
    """Topic-keyed fan-out of debate events to live subscribers."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def publish(self, debate_id: str, event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Deliver an event to every current subscriber of a debate.

        A listener that raises is logged and skipped; the others still receive
        the event.

        Returns:
            The ``{type, payload, at}`` frame that was delivered
        """
        event = {"type": event_type, "payload": payload, "at": now_iso()}
        for listener in list(self._listeners.get(debate_id, ())):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener failed for %s event on debate %s", event_type, debate_id)
        return event

    def subscribe(self, debate_id: str, listener: Listener) -> Callable[[], None]:
        """Attach a listener; returns a function that detaches it."""
        self._listeners[debate_id].append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(debate_id)
            if not listeners:
                return
            if listener in listeners:
                listeners.remove(listener)
            if not listeners:
                del self._listeners[debate_id]

        return unsubscribe

    def subscriber_count(self, debate_id: str) -> int:
        return len(self._listeners.get(debate_id, ()))
