"""
scans/orchestrator.py -- Runs provider scans as independent asyncio tasks.

run_scan() validates synchronously -- unknown provider, unsupported scan
type, and a missing or expired connection all raise to the caller before any
record or task exists, so nobody waits on a scan that could never start. It
then records the scan as running and returns the scan_id immediately; the
scan itself runs as its own task:

  1. resolve the *current* credential from the lifecycle manager (a refresh
     between run_scan() and dispatch is picked up here)
  2. build the provider scanner
  3. run it under scan_timeout_seconds
  4. finalize the record: completed with the ScanResult, or failed with the
     error message (timeouts and cancellation included)

There is no global scan lock: any number of scans, for any mix of providers,
run concurrently. A failing scan only affects its own record.

Partial-failure policy: a sub-request that fails with anything other than
404 fails the whole scan with that first error. Results gathered before the
failure are not kept. 404s are not failures (see scanners/base.py).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from auth.lifecycle import CredentialLifecycleManager
from auth.registry import ProviderRegistry
from core.config import Settings
from core.errors import NoActiveConnection, UnsupportedScanType
from core.models import Credential, ScanRecord, ScanStatus
from scanners import scanner_class, scanner_for
from scanners.base import ProviderScanner
from scans.store import ScanStore

logger = logging.getLogger("cloudscan.scans")

ScannerFactory = Callable[[str, Credential, httpx.AsyncClient, Settings], ProviderScanner]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ScanOrchestrator:
    """Starts scans, tracks their tasks, and answers status queries.

    Usage (inside a running event loop):
        orchestrator = ScanOrchestrator(registry, lifecycle, ScanStore())
        scan_id = orchestrator.run_scan("github", "code_security")
        record = await orchestrator.wait(scan_id)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        lifecycle: CredentialLifecycleManager,
        store: ScanStore,
        *,
        http: Optional[httpx.AsyncClient] = None,
        scanner_factory: ScannerFactory = scanner_for,
    ) -> None:
        self.registry = registry
        self.lifecycle = lifecycle
        self.store = store
        self.settings = registry.settings
        self.http = http or lifecycle.http
        self._scanner_factory = scanner_factory
        self._tasks: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def run_scan(self, provider_id: str, scan_type: str, options: Optional[dict[str, Any]] = None) -> str:
        """Start a scan and return its scan_id without waiting for it.

        Raises:
            UnknownProvider:     provider_id is not in the registry.
            UnsupportedScanType: the provider has no scan of that name.
            NoActiveConnection:  no credential, or the credential has expired.
        """
        config = self.registry.get(provider_id)
        if not scanner_class(config.id).supports(scan_type):
            raise UnsupportedScanType(config.id, scan_type)
        if not self.lifecycle.is_active(config.id):
            raise NoActiveConnection(config.id)

        options = dict(options or {})
        scan_id = f"{config.id}_{scan_type}_{uuid.uuid4().hex[:12]}"
        self.store.create(
            ScanRecord(
                scan_id=scan_id,
                provider_id=config.id,
                scan_type=scan_type,
                status=ScanStatus.running,
                started_at=_now_iso(),
                options=options,
            )
        )
        task = asyncio.get_running_loop().create_task(
            self._execute(scan_id, config.id, scan_type, options), name=f"scan:{scan_id}"
        )
        self._tasks[scan_id] = task
        task.add_done_callback(lambda t: self._on_task_done(scan_id, t))
        logger.info("Scan %s started", scan_id)
        return scan_id

    async def _execute(self, scan_id: str, provider_id: str, scan_type: str, options: dict[str, Any]) -> None:
        try:
            credential = self.lifecycle.get(provider_id)
            if credential is None or not self.lifecycle.is_active(provider_id):
                raise NoActiveConnection(provider_id)
            scanner = self._scanner_factory(provider_id, credential, self.http, self.settings)
            result = await asyncio.wait_for(
                scanner.run_scan(scan_type, options),
                timeout=self.settings.scan_timeout_seconds,
            )
        except asyncio.CancelledError:
            self._finalize(scan_id, ScanStatus.failed, error="Scan cancelled")
            raise
        except asyncio.TimeoutError:
            self._finalize(
                scan_id,
                ScanStatus.failed,
                error=f"Scan timed out after {self.settings.scan_timeout_seconds:.0f}s",
            )
        except Exception as e:
            logger.warning("Scan %s failed: %s", scan_id, e)
            self._finalize(scan_id, ScanStatus.failed, error=str(e) or type(e).__name__)
        else:
            self._finalize(scan_id, ScanStatus.completed, result=result.to_dict())

    def _on_task_done(self, scan_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(scan_id, None)
        # A task cancelled before its first step never reaches _execute's
        # handlers; finalize here so the record cannot stay running.
        if task.cancelled() and self.store.finalize(scan_id, ScanStatus.failed, error="Scan cancelled"):
            logger.info("Scan %s failed (cancelled before start)", scan_id)

    def _finalize(self, scan_id: str, status: ScanStatus, **fields: Any) -> None:
        if self.store.finalize(scan_id, status, **fields):
            logger.info("Scan %s %s", scan_id, status.value)
        else:
            logger.warning("Scan %s was already finalized; %s ignored", scan_id, status.value)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_status(self, scan_id: str) -> Optional[ScanRecord]:
        return self.store.get(scan_id)

    def list_active(self, provider_id: Optional[str] = None, limit: int = 100) -> list[ScanRecord]:
        """Running scans, newest first, optionally for one provider."""
        return self.store.list_records(
            provider_id=provider_id.lower() if provider_id else None,
            status=ScanStatus.running,
            limit=limit,
        )

    def list_scans(self, provider_id: Optional[str] = None, limit: int = 100) -> list[ScanRecord]:
        return self.store.list_records(provider_id=provider_id.lower() if provider_id else None, limit=limit)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def cancel(self, scan_id: str) -> bool:
        """Request cancellation of an in-flight scan. False if it is not running here."""
        task = self._tasks.get(scan_id)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("Scan %s cancellation requested", scan_id)
        return True

    async def wait(self, scan_id: str) -> Optional[ScanRecord]:
        """Wait for an in-flight scan to finish, then return its record."""
        task = self._tasks.get(scan_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.store.get(scan_id)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
