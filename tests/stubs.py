"""
tests/stubs.py -- Test doubles shared by the test modules.

  ProviderStub  -- route table behind httpx.MockTransport; no test touches the
                   network. Anything not stubbed answers 404, which scanners
                   read as "feature not enabled".
  FakeClock     -- settable "now" for sessions and credential expiry.
  FakeScheduler -- records refresh timers instead of arming them; tests call
                   fire(provider_id) to run one.
  RecordingBus  -- EventBus that keeps every published event.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from core.config import Settings
from core.events import EventBus

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

Responder = Callable[[httpx.Request], httpx.Response]


# ---------------------------------------------------------------------------
# HTTP stubbing
# ---------------------------------------------------------------------------


def reply(
    status_code: int = 200,
    json: Any = None,
    headers: Optional[dict[str, str]] = None,
    text: str = "",
) -> Responder:
    """Build a responder that returns a fresh httpx.Response on every call."""

    def build(request: httpx.Request) -> httpx.Response:
        if json is not None:
            return httpx.Response(status_code, json=json, headers=headers)
        return httpx.Response(status_code, text=text, headers=headers)

    return build


class ProviderStub:
    """Keyed by (METHOD, scheme://host/path); the query string is ignored.

    A route given several responders answers with them in order and keeps
    repeating the last one.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Responder]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, url: str, *responders: Responder) -> None:
        self.routes[(method.upper(), url)] = list(responders)

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and _route_key(r)[1] == url]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(_route_key(request))
        if not queue:
            return httpx.Response(404, json={"message": "Not Found"})
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        return responder(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def _route_key(request: httpx.Request) -> tuple[str, str]:
    url = request.url
    return request.method, f"{url.scheme}://{url.host}{url.path}"


# ---------------------------------------------------------------------------
# Time and timers
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeScheduler:
    """RefreshScheduler that records timers instead of arming them."""

    def __init__(self) -> None:
        self.timers: dict[str, tuple[float, Callable]] = {}
        self.cancelled: list[str] = []

    def schedule(self, key: str, delay: float, callback) -> None:
        self.cancel(key)
        self.timers[key] = (delay, callback)

    def cancel(self, key: str) -> bool:
        if self.timers.pop(key, None) is None:
            return False
        self.cancelled.append(key)
        return True

    def cancel_all(self) -> None:
        for key in list(self.timers):
            self.cancel(key)

    def delay(self, key: str) -> float:
        return self.timers[key][0]

    async def fire(self, key: str) -> None:
        _delay, callback = self.timers.pop(key)
        await callback()


class RecordingBus(EventBus):
    def __init__(self) -> None:
        super().__init__()
        self.received: list = []
        self.subscribe(self.received.append)

    def names(self) -> list[str]:
        return [event.name for event in self.received]


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "debug": True,
        "public_origin": "http://localhost:8000",
        "azure_client_id": "azure-client",
        "azure_client_secret": "azure-secret",
        "aws_client_id": "aws-client",
        "aws_client_secret": "aws-secret",
        "google_client_id": "google-client",
        "google_client_secret": "google-secret",
        "github_client_id": "github-client",
        "github_client_secret": "github-secret",
        "google_organization_id": "123456",
        "scan_max_pages": 3,
        "scan_timeout_seconds": 5.0,
    }
    values.update(overrides)
    return Settings(**values)

