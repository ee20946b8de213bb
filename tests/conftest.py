"""
tests/conftest.py -- Shared test fixtures for CloudScan unit and integration tests.

This module provides:
  - settings / registry / lifecycle / controller: the auth core wired to the
    doubles in stubs.py (stubbed HTTP transport, fake clock, fake scheduler)
  - credential_factory: builds Credentials relative to the fake clock
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the scan store used by api_client is a named shared-memory SQLite URI
(not plain :memory:) so every connection the engine opens sees the same
schema and rows.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.controller import AuthFlowController
from auth.lifecycle import CredentialLifecycleManager
from auth.registry import ProviderRegistry
from auth.sessions import PkceSessionStore
from core.config import Settings
from core.models import Credential
from scans.orchestrator import ScanOrchestrator
from scans.store import ScanStore
from stubs import FakeClock, FakeScheduler, ProviderStub, RecordingBus, make_settings

# ---------------------------------------------------------------------------
# Core component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def events() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def registry(settings: Settings) -> ProviderRegistry:
    return ProviderRegistry(settings)


@pytest.fixture
def lifecycle(registry, events, scheduler, stub, clock) -> CredentialLifecycleManager:
    return CredentialLifecycleManager(
        registry,
        events=events,
        scheduler=scheduler,
        http=stub.client(),
        clock=clock,
    )


@pytest.fixture
def controller(registry, lifecycle, clock) -> AuthFlowController:
    return AuthFlowController(registry, PkceSessionStore(ttl=600, clock=clock), lifecycle, clock=clock)


@pytest.fixture
def credential_factory(clock: FakeClock) -> Callable[..., Credential]:
    """Return a builder for Credentials relative to the fake clock."""

    def build(provider_id: str = "github", *, expires_in: float = 3600, **fields: Any) -> Credential:
        fields.setdefault("access_token", f"{provider_id}-access-1")
        fields.setdefault("refresh_token", f"{provider_id}-refresh-1")
        return Credential(
            provider_id=provider_id,
            expires_at=clock() + timedelta(seconds=expires_in),
            connected_at=clock(),
            **fields,
        )

    return build


# ---------------------------------------------------------------------------
# API integration fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, stub: ProviderStub, scan_store: ScanStore, scheduler: FakeScheduler):
    """Return an async context manager that replaces the real lifespan.

    Builds the same component graph as api.main.lifespan, but with the
    stubbed HTTP transport, the fake scheduler, and the in-memory scan store.
    The purge_task is a long-sleeping coroutine so shutdown can cancel it.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.events = RecordingBus()
        app.state.registry = ProviderRegistry(settings)
        app.state.http = stub.client()
        app.state.lifecycle = CredentialLifecycleManager(
            app.state.registry,
            events=app.state.events,
            scheduler=scheduler,
            http=app.state.http,
        )
        app.state.controller = AuthFlowController(
            app.state.registry,
            PkceSessionStore(ttl=settings.session_ttl_seconds),
            app.state.lifecycle,
        )
        app.state.scan_store = scan_store
        app.state.orchestrator = ScanOrchestrator(app.state.registry, app.state.lifecycle, scan_store)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        await app.state.orchestrator.shutdown()
        await app.state.lifecycle.close()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, ProviderStub], None, None]:
    """Yield (client, stub) for API integration tests.

    One TestClient per test module. Rate-limit counters are reset so modules
    do not eat into each other's per-minute budgets.
    """
    stub = ProviderStub()
    db_name = request.module.__name__.rsplit(".", 1)[-1]
    scan_store = ScanStore(f"sqlite:///file:test_scans_{db_name}?mode=memory&cache=shared&uri=true")

    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(make_settings(), stub, scan_store, FakeScheduler())

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, stub

    scan_store.close()
