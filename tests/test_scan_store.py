"""Unit tests for scans/store.py -- ScanStore repository.

Covers:
- create / get round trip including options
- finalize() moves running -> terminal exactly once
- list_records() filters and newest-first ordering
- fail_running() and purge_older_than()
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.models import ScanRecord, ScanStatus
from scans.store import ScanStore


@pytest.fixture
def store():
    s = ScanStore("sqlite:///:memory:")
    yield s
    s.close()


def _record(scan_id: str, provider_id: str = "github", started_at: str = "2026-03-01T12:00:00+00:00") -> ScanRecord:
    return ScanRecord(
        scan_id=scan_id,
        provider_id=provider_id,
        scan_type="code_security",
        status=ScanStatus.running,
        started_at=started_at,
        options={"max_repositories": 5},
    )


class TestLifecycle:
    def test_create_and_get(self, store):
        store.create(_record("s1"))
        record = store.get("s1")
        assert record.status is ScanStatus.running
        assert record.options == {"max_repositories": 5}
        assert record.result is None
        assert record.is_terminal is False

    def test_get_missing_returns_none(self, store):
        assert store.get("nope") is None

    def test_finalize_completed_stores_result(self, store):
        store.create(_record("s1"))
        assert store.finalize("s1", ScanStatus.completed, result={"summary": {"total": 0}}) is True
        record = store.get("s1")
        assert record.status is ScanStatus.completed
        assert record.result == {"summary": {"total": 0}}
        assert record.ended_at is not None

    def test_terminal_record_is_immutable(self, store):
        store.create(_record("s1"))
        store.finalize("s1", ScanStatus.failed, error="boom")
        assert store.finalize("s1", ScanStatus.completed, result={"x": 1}) is False
        record = store.get("s1")
        assert record.status is ScanStatus.failed
        assert record.error == "boom"
        assert record.result is None

    def test_finalize_rejects_running(self, store):
        store.create(_record("s1"))
        with pytest.raises(ValueError):
            store.finalize("s1", ScanStatus.running)


class TestQueries:
    def test_list_filters_and_orders(self, store):
        store.create(_record("old", started_at="2026-03-01T10:00:00+00:00"))
        store.create(_record("new", started_at="2026-03-01T11:00:00+00:00"))
        store.create(_record("other", provider_id="azure"))
        store.finalize("old", ScanStatus.completed, result={})

        assert [r.scan_id for r in store.list_records(provider_id="github")] == ["new", "old"]
        assert [r.scan_id for r in store.list_records(status=ScanStatus.running, provider_id="github")] == ["new"]
        assert len(store.list_records(limit=1)) == 1

    def test_fail_running(self, store):
        store.create(_record("a"))
        store.create(_record("b"))
        store.finalize("b", ScanStatus.completed, result={})

        assert store.fail_running("Interrupted") == 1
        assert store.get("a").status is ScanStatus.failed
        assert store.get("a").error == "Interrupted"
        assert store.get("b").status is ScanStatus.completed

    def test_purge_older_than_keeps_running_and_recent(self, store):
        store.create(_record("done"))
        store.create(_record("running"))
        store.finalize("done", ScanStatus.completed, result={})

        assert store.purge_older_than(3600) == 0
        # A negative window puts the cutoff in the future.
        assert store.purge_older_than(-3600) == 1
        assert store.get("done") is None
        assert store.get("running") is not None


def test_ended_at_is_utc_iso():
    s = ScanStore("sqlite:///:memory:")
    s.create(_record("s1"))
    s.finalize("s1", ScanStatus.failed, error="x")
    ended = datetime.fromisoformat(s.get("s1").ended_at)
    assert abs(datetime.now(timezone.utc) - ended) < timedelta(minutes=1)
    s.close()
