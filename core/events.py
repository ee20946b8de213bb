"""
core/events.py -- Typed lifecycle events and a minimal observer bus.

Each event class carries a class-level `name` matching the event names the
front end already listens for ("connection:established", ...). Listeners
receive the event object and dispatch on its type or its name.

Delivery is synchronous and in subscription order. A listener that raises is
logged with its traceback and skipped; the remaining listeners still run, so
one broken consumer cannot hide a ConnectionExpired from the others.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import ClassVar, Union

from core.models import Credential

logger = logging.getLogger("cloudscan.events")


@dataclass(frozen=True)
class ConnectionEstablished:
    name: ClassVar[str] = "connection:established"
    provider_id: str
    credential: Credential


@dataclass(frozen=True)
class TokenRefreshed:
    name: ClassVar[str] = "token:refreshed"
    provider_id: str
    credential: Credential


@dataclass(frozen=True)
class ConnectionExpired:
    name: ClassVar[str] = "connection:expired"
    provider_id: str
    reason: str


@dataclass(frozen=True)
class Disconnected:
    name: ClassVar[str] = "connection:disconnected"
    provider_id: str


LifecycleEvent = Union[ConnectionEstablished, TokenRefreshed, ConnectionExpired, Disconnected]
Listener = Callable[[LifecycleEvent], None]


class EventBus:
    """Fan-out of lifecycle events to subscribed listeners.

    Usage:
        bus = EventBus()
        unsubscribe = bus.subscribe(lambda event: print(event.name))
        bus.publish(Disconnected(provider_id="github"))
        unsubscribe()
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: LifecycleEvent) -> None:
        # Iterate over a copy: a listener may unsubscribe itself mid-delivery.
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener %r failed while handling %s", listener, event.name)


def log_event(event: LifecycleEvent) -> None:
    """Default listener: one log line per lifecycle event, never token values."""
    if isinstance(event, ConnectionExpired):
        logger.warning("%s provider=%s reason=%s", event.name, event.provider_id, event.reason)
    else:
        logger.info("%s provider=%s", event.name, event.provider_id)
