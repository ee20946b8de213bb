"""Unit tests for core/scheduler.py -- AsyncioRefreshScheduler on a real loop."""

import asyncio

import pytest

from core.scheduler import AsyncioRefreshScheduler


@pytest.mark.asyncio
async def test_timer_fires_callback():
    scheduler = AsyncioRefreshScheduler()
    fired = asyncio.Event()

    async def callback():
        fired.set()

    scheduler.schedule("github", 0.01, callback)
    await asyncio.wait_for(fired.wait(), timeout=1)
    assert scheduler.pending("github") is False


@pytest.mark.asyncio
async def test_reschedule_replaces_pending_timer():
    scheduler = AsyncioRefreshScheduler()
    calls = []

    async def old():
        calls.append("old")

    async def new():
        calls.append("new")

    scheduler.schedule("google", 0.05, old)
    scheduler.schedule("google", 0.01, new)
    await asyncio.sleep(0.1)
    assert calls == ["new"]


@pytest.mark.asyncio
async def test_cancel_prevents_fire():
    scheduler = AsyncioRefreshScheduler()
    calls = []

    async def callback():
        calls.append("fired")

    scheduler.schedule("azure", 0.01, callback)
    assert scheduler.cancel("azure") is True
    assert scheduler.cancel("azure") is False
    await asyncio.sleep(0.05)
    assert calls == []


@pytest.mark.asyncio
async def test_negative_delay_fires_immediately():
    scheduler = AsyncioRefreshScheduler()
    fired = asyncio.Event()

    async def callback():
        fired.set()

    scheduler.schedule("aws", -5, callback)
    await asyncio.wait_for(fired.wait(), timeout=1)


@pytest.mark.asyncio
async def test_cancel_all():
    scheduler = AsyncioRefreshScheduler()

    async def callback():
        pass

    scheduler.schedule("a", 10, callback)
    scheduler.schedule("b", 10, callback)
    scheduler.cancel_all()
    assert not scheduler.pending("a")
    assert not scheduler.pending("b")
