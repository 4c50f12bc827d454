"""
In-process publish/subscribe for "data changed" notifications.

The bus is an explicit object handed to whatever owns caches and screens;
there is no module-level instance. Delivery is synchronous, in subscription
order, on the publishing thread.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

SYNC_DATA = "SYNC_DATA"


@dataclass(frozen=True)
class SyncEvent:
    name: str
    payload: Any = None


Handler = Callable[[SyncEvent], None]


@dataclass(eq=False)
class Subscription:
    """Handle returned by subscribe. Calling it, or .unsubscribe(), removes the handler."""

    bus: "SyncEventBus"
    event_name: str
    handler: Handler
    active: bool = field(default=True)

    def unsubscribe(self) -> None:
        if self.active:
            self.bus._remove(self)
            self.active = False

    def __call__(self) -> None:
        self.unsubscribe()


class SyncEventBus:
    """
    Synchronous event bus with a soft per-event subscriber cap.

    The cap is a leak detector only: going over it logs a warning and the
    subscription is still accepted.
    """

    def __init__(self, max_subscribers: int = 20) -> None:
        self.max_subscribers = max_subscribers
        self._subscriptions: dict[str, list[Subscription]] = {}
        self.logger = logger.bind(component="sync_event_bus")

    def subscribe(self, event_name: str, handler: Handler) -> Subscription:
        subscription = Subscription(bus=self, event_name=event_name, handler=handler)
        subscribers = self._subscriptions.setdefault(event_name, [])
        subscribers.append(subscription)

        if len(subscribers) > self.max_subscribers:
            self.logger.warning(
                "subscriber_soft_cap_exceeded",
                event_name=event_name,
                subscribers=len(subscribers),
                max_subscribers=self.max_subscribers,
            )
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions.get(subscription.event_name, [])
        # Identity match: the same function may be subscribed twice
        for index, candidate in enumerate(subscribers):
            if candidate is subscription:
                del subscribers[index]
                break
        if not subscribers:
            self._subscriptions.pop(subscription.event_name, None)

    def publish(self, event_name: str, payload: Any = None) -> bool:
        """
        Invoke every handler subscribed to event_name, in subscription order.

        Handlers see the subscriber list as it was when publish started.
        Returns True if at least one handler ran. Handler exceptions
        propagate to the publisher.
        """
        subscribers = list(self._subscriptions.get(event_name, []))
        self.logger.debug(
            "sync_event_published", event_name=event_name, subscribers=len(subscribers)
        )
        if not subscribers:
            return False

        event = SyncEvent(name=event_name, payload=payload)
        for subscription in subscribers:
            if subscription.active:
                subscription.handler(event)
        return True

    def subscriber_count(self, event_name: str) -> int:
        return len(self._subscriptions.get(event_name, []))

    def clear(self, event_name: str | None = None) -> None:
        """Drop every subscription, or only those for one event."""
        names = [event_name] if event_name is not None else list(self._subscriptions)
        for name in names:
            for subscription in self._subscriptions.pop(name, []):
                subscription.active = False
