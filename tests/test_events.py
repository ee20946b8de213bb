"""Unit tests for core/events.py -- EventBus delivery and event names."""

import logging

from core.events import ConnectionEstablished, ConnectionExpired, Disconnected, EventBus, TokenRefreshed, log_event


def test_event_names():
    assert ConnectionEstablished.name == "connection:established"
    assert TokenRefreshed.name == "token:refreshed"
    assert ConnectionExpired.name == "connection:expired"
    assert Disconnected.name == "connection:disconnected"


def test_delivery_in_subscription_order():
    bus = EventBus()
    seen = []
    bus.subscribe(lambda e: seen.append(("first", e.provider_id)))
    bus.subscribe(lambda e: seen.append(("second", e.provider_id)))
    bus.publish(Disconnected(provider_id="github"))
    assert seen == [("first", "github"), ("second", "github")]


def test_failing_listener_does_not_stop_delivery(caplog):
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    with caplog.at_level(logging.ERROR, logger="cloudscan.events"):
        bus.publish(ConnectionExpired(provider_id="google", reason="invalid_grant"))

    assert len(seen) == 1
    assert "listener bug" in caplog.text


def test_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(seen.append)
    unsubscribe()
    unsubscribe()
    bus.publish(Disconnected(provider_id="github"))
    assert seen == []


def test_log_event_warns_on_expiry(caplog):
    with caplog.at_level(logging.INFO, logger="cloudscan.events"):
        log_event(ConnectionExpired(provider_id="google", reason="invalid_grant"))
        log_event(Disconnected(provider_id="github"))
    levels = [(r.levelname, r.getMessage()) for r in caplog.records]
    assert levels[0] == ("WARNING", "connection:expired provider=google reason=invalid_grant")
    assert levels[1] == ("INFO", "connection:disconnected provider=github")
