"""In-process publish/subscribe channel.

OS change notifications (app activation, focus change, space change) are
published here as named topics; the pause engine subscribes and refreshes.
Sleep and wake notifications are routed to the break timer by the service
runner; a wake event may carry ``{"slept_seconds": ...}``.
"""
import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]

APP_ACTIVATED = "app_activated"
FOCUS_CHANGED = "focus_changed"
SPACE_CHANGED = "space_changed"
DECISION_CHANGED = "decision_changed"
SYSTEM_WILL_SLEEP = "system_will_sleep"
SYSTEM_DID_WAKE = "system_did_wake"

ENVIRONMENT_TOPICS = (APP_ACTIVATED, FOCUS_CHANGED, SPACE_CHANGED)


class EventBus:
    """Topic-routed event bus; "*" receives every topic"""

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Subscribe and return a callable that removes the subscription"""
        with self._lock:
            self._subscribers[topic].append(handler)

        def unsubscribe():
            with self._lock:
                if handler in self._subscribers.get(topic, []):
                    self._subscribers[topic].remove(handler)

        return unsubscribe

    def publish(self, topic: str, event: Any = None) -> None:
        handlers = []
        with self._lock:
            handlers.extend(self._subscribers.get(topic, []))
            handlers.extend(self._subscribers.get("*", []))
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"EventBus handler failed for topic '{topic}': {e}")
