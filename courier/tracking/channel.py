"""Real-time channel interface and an in-process implementation."""

import logging
import threading
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], None]


class Subscription(Protocol):
    def unsubscribe(self) -> None: ...


class RealtimeChannel(Protocol):
    """Publish/subscribe keyed by user id.

    Delivery is at-least-once with no ordering guarantee; consumers must
    tolerate duplicates and reordering.
    """

    def subscribe(self, user_id: str, handler: MessageHandler) -> Subscription: ...

    def publish(self, user_id: str, message: Any) -> None: ...


class _InMemorySubscription:
    def __init__(self, channel: "InMemoryChannel", user_id: str, handler: MessageHandler):
        self._channel = channel
        self.user_id = user_id
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._channel._remove(self)


class InMemoryChannel:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[_InMemorySubscription]] = {}

    def subscribe(self, user_id: str, handler: MessageHandler) -> _InMemorySubscription:
        sub = _InMemorySubscription(self, user_id, handler)
        with self._lock:
            self._subscribers.setdefault(user_id, []).append(sub)
        return sub

    def publish(self, user_id: str, message: Any) -> None:
        with self._lock:
            subscribers = list(self._subscribers.get(user_id, []))
        for sub in subscribers:
            try:
                sub.handler(message)
            except Exception:
                logger.exception("Real-time handler failed for user %s", user_id)

    def subscriber_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, []))

    def _remove(self, sub: _InMemorySubscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.user_id, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subscribers.pop(sub.user_id, None)
