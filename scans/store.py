"""
scans/store.py -- SQLAlchemy Core persistence layer for scan records.

Pattern: Repository + Data Mapper (same shape as the other stores).
ScanStore is the repository; _row_to_record is the mapper. The orchestrator
and route handlers never touch SQL directly.

Lifecycle invariant:
  A record is created as "running" and finalized exactly once. finalize()
  issues UPDATE ... WHERE status = 'running', so a second finalize (a timeout
  racing a completion, a cancel racing a failure) matches no row and returns
  False. Terminal records are never written again.

Security: all queries use bound parameters. No f-strings in SQL.

DB path: scans/cloudscan_scans.db unless SCAN_DB_URL is set. Result payloads
are stored as JSON text.

Usage:
    store = ScanStore()                                   # SQLite default
    store.create(record)
    store.finalize(scan_id, ScanStatus.completed, result=result.to_dict())
    store.get(scan_id)
    store.purge_older_than(7 * 24 * 3600)
    store.close()
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import Column, Index, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

from core.models import ScanRecord, ScanStatus

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'cloudscan_scans.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_scans = Table(
    "scan_records",
    _metadata,
    Column("scan_id", String(128), primary_key=True),
    Column("provider_id", String(30), nullable=False),
    Column("scan_type", String(50), nullable=False),
    Column("status", String(20), nullable=False),
    Column("started_at", String(32), nullable=False),
    Column("ended_at", String(32)),
    Column("options", Text),  # JSON object
    Column("result", Text),  # JSON ScanResult, NULL until completed
    Column("error", Text),
    Index("ix_scan_records_provider_status", "provider_id", "status"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so history reads do not block finalize writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_record(row) -> ScanRecord:
    m = row._mapping
    return ScanRecord(
        scan_id=m["scan_id"],
        provider_id=m["provider_id"],
        scan_type=m["scan_type"],
        status=ScanStatus(m["status"]),
        started_at=m["started_at"],
        ended_at=m["ended_at"],
        result=json.loads(m["result"]) if m["result"] else None,
        error=m["error"],
        options=json.loads(m["options"]) if m["options"] else {},
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ScanStore:
    def __init__(self, db_url: str = "") -> None:
        db_url = db_url or _DEFAULT_DB_URL
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def create(self, record: ScanRecord) -> None:
        """Insert a new running record. Raises IntegrityError on a duplicate scan_id."""
        with self.engine.connect() as conn:
            conn.execute(
                _scans.insert().values(
                    scan_id=record.scan_id,
                    provider_id=record.provider_id,
                    scan_type=record.scan_type,
                    status=record.status.value,
                    started_at=record.started_at,
                    ended_at=record.ended_at,
                    options=json.dumps(record.options, default=str),
                    result=None,
                    error=None,
                )
            )
            conn.commit()

    def finalize(
        self,
        scan_id: str,
        status: ScanStatus,
        *,
        result: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Move a running record to a terminal status. False if it was already terminal."""
        if status is ScanStatus.running:
            raise ValueError("finalize() requires a terminal status")
        with self.engine.connect() as conn:
            res = conn.execute(
                _scans.update()
                .where((_scans.c.scan_id == scan_id) & (_scans.c.status == ScanStatus.running.value))
                .values(
                    status=status.value,
                    ended_at=_now_iso(),
                    result=json.dumps(result, default=str) if result is not None else None,
                    error=error,
                )
            )
            conn.commit()
            return res.rowcount > 0

    def get(self, scan_id: str) -> Optional[ScanRecord]:
        with self.engine.connect() as conn:
            row = conn.execute(_scans.select().where(_scans.c.scan_id == scan_id)).fetchone()
        return _row_to_record(row) if row is not None else None

    def list_records(
        self,
        provider_id: Optional[str] = None,
        status: Optional[ScanStatus] = None,
        limit: int = 100,
    ) -> list[ScanRecord]:
        """Newest first, optionally filtered by provider and/or status."""
        query = _scans.select()
        if provider_id:
            query = query.where(_scans.c.provider_id == provider_id)
        if status is not None:
            query = query.where(_scans.c.status == status.value)
        query = query.order_by(_scans.c.started_at.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_record(r) for r in rows]

    def fail_running(self, error: str) -> int:
        """Finalize every running record as failed. Used at startup for records
        orphaned by a previous process."""
        with self.engine.connect() as conn:
            res = conn.execute(
                _scans.update()
                .where(_scans.c.status == ScanStatus.running.value)
                .values(status=ScanStatus.failed.value, ended_at=_now_iso(), error=error)
            )
            conn.commit()
            return res.rowcount

    def purge_older_than(self, seconds: int) -> int:
        """Delete terminal records that ended more than `seconds` ago. Returns rows removed."""
        cutoff = (datetime.now(timezone.utc) - timedelta(seconds=seconds)).isoformat()
        with self.engine.connect() as conn:
            res = conn.execute(
                _scans.delete().where((_scans.c.status != ScanStatus.running.value) & (_scans.c.ended_at < cutoff))
            )
            conn.commit()
            return res.rowcount

    def close(self) -> None:
        self.engine.dispose()
