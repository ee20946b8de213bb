"""
core/scheduler.py -- Keyed one-shot timers with cancel-and-replace semantics.

The credential lifecycle manager arms one refresh timer per provider. Arming
a key that already has a pending timer cancels the old one first, so a stale
timer can never fire against a credential it no longer matches.

RefreshScheduler is the protocol the lifecycle manager depends on.
AsyncioRefreshScheduler is the production implementation backed by
loop.call_later(); tests inject a recording fake and drive callbacks by hand.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

logger = logging.getLogger("cloudscan.scheduler")

TimerCallback = Callable[[], Awaitable[None]]


class RefreshScheduler(Protocol):
    def schedule(self, key: str, delay: float, callback: TimerCallback) -> None: ...

    def cancel(self, key: str) -> bool: ...

    def cancel_all(self) -> None: ...


class AsyncioRefreshScheduler:
    """RefreshScheduler on top of the running asyncio event loop.

    schedule() must be called from the event loop thread. When the timer
    fires, the callback coroutine runs as its own task; the scheduler keeps a
    reference to it until it finishes so it is not garbage collected.
    """

    def __init__(self) -> None:
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    def schedule(self, key: str, delay: float, callback: TimerCallback) -> None:
        self.cancel(key)
        loop = asyncio.get_running_loop()
        self._handles[key] = loop.call_later(max(0.0, delay), self._fire, key, callback)
        logger.debug("Timer armed key=%s delay=%.1fs", key, delay)

    def cancel(self, key: str) -> bool:
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        logger.debug("Timer cancelled key=%s", key)
        return True

    def cancel_all(self) -> None:
        for key in list(self._handles):
            self.cancel(key)

    def pending(self, key: str) -> bool:
        return key in self._handles

    def _fire(self, key: str, callback: TimerCallback) -> None:
        self._handles.pop(key, None)
        task = asyncio.ensure_future(callback())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
