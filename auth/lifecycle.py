"""
auth/lifecycle.py -- Owns the table of active provider connections.

One Credential per provider id (last write wins). Every write goes through
store(), which cancels the provider's pending refresh timer before arming a
new one, so a timer can only ever fire against the credential it was armed
for.

Refresh policy:
  The timer fires refresh_margin_seconds (default 300) before expiry, clamped
  at zero so a near-expired token refreshes immediately. A refresh failure is
  terminal for that credential: the timer is cancelled, the credential is
  removed, and exactly one ConnectionExpired event is published. There is no
  retry -- the user re-authorizes. A stricter deployment could add a bounded
  retry in refresh() before calling _expire().

Concurrency:
  All state changes run on the event loop thread. refresh() holds a
  per-provider asyncio.Lock across its network call; store() and disconnect()
  are synchronous and never wait on it. A refresh that returns after its
  credential was replaced or disconnected discards its result -- the
  identity + generation check below is what makes that safe.

Layer rule: no imports from api/, scanners/, or scans/.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Optional

import httpx

from auth.registry import ProviderRegistry
from core.errors import TokenRefreshFailure
from core.events import ConnectionEstablished, ConnectionExpired, Disconnected, EventBus, TokenRefreshed
from core.models import Credential, expiry_from
from core.scheduler import AsyncioRefreshScheduler, RefreshScheduler

logger = logging.getLogger("cloudscan.auth.lifecycle")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialLifecycleManager:
    """Credential table, refresh timers, and lifecycle events.

    Usage:
        manager = CredentialLifecycleManager(registry, events=bus)
        manager.store("github", credential)     # arms the refresh timer
        manager.is_active("github")             # True until expiry
        manager.disconnect("github")            # cancels timer, emits Disconnected
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        events: Optional[EventBus] = None,
        scheduler: Optional[RefreshScheduler] = None,
        http: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = _utcnow,
        refresh_margin: Optional[int] = None,
    ) -> None:
        self.registry = registry
        self.events = events or EventBus()
        self.scheduler = scheduler or AsyncioRefreshScheduler()
        self.http = http or httpx.AsyncClient(timeout=registry.settings.http_timeout_seconds)
        self._clock = clock
        self.refresh_margin = (
            refresh_margin if refresh_margin is not None else registry.settings.refresh_margin_seconds
        )
        self._credentials: dict[str, Credential] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def store(self, provider_id: str, credential: Credential) -> None:
        """Replace the provider's credential and re-arm its refresh timer."""
        pid = self.registry.get(provider_id).id
        self.scheduler.cancel(pid)
        self._credentials[pid] = credential
        self.schedule_refresh(pid, credential)
        logger.info("Stored credential for %s (expires %s)", pid, credential.expires_at.isoformat())
        self.events.publish(ConnectionEstablished(provider_id=pid, credential=credential))

    def refresh_delay(self, credential: Credential) -> float:
        """Seconds from now until the refresh timer should fire (never negative)."""
        return max(0.0, credential.expires_in(self._clock()) - self.refresh_margin)

    def schedule_refresh(self, provider_id: str, credential: Credential) -> None:
        """Arm the refresh timer; without a refresh token nothing can be refreshed."""
        if not credential.refresh_token:
            logger.debug("No refresh token for %s -- connection lapses at expiry", provider_id)
            return
        delay = self.refresh_delay(credential)

        async def fire() -> None:
            await self.refresh(provider_id)

        self.scheduler.schedule(provider_id, delay, fire)
        logger.debug("Refresh for %s armed in %.0fs", provider_id, delay)

    async def refresh(self, provider_id: str) -> Optional[Credential]:
        """Redeem the stored refresh token; returns the updated credential or None.

        Failure is reported through ConnectionExpired, never raised: the usual
        caller is a timer with nobody waiting on it.
        """
        pid = provider_id.lower()
        async with self._lock_for(pid):
            credential = self._credentials.get(pid)
            if credential is None:
                logger.info("Refresh skipped for %s -- no connection", pid)
                return None
            if not credential.refresh_token:
                self._expire(pid, "No refresh token available")
                return None

            generation = credential.generation
            flow = self.registry.flow(pid)
            try:
                tokens = await flow.refresh(
                    self.http,
                    refresh_token=credential.refresh_token,
                    tenant_id=credential.tenant_id,
                )
            except TokenRefreshFailure as e:
                if self._is_current(pid, credential, generation):
                    self._expire(pid, str(e))
                return None

            if not self._is_current(pid, credential, generation):
                logger.info("Discarding refresh result for %s -- credential replaced meanwhile", pid)
                return None

            credential.access_token = tokens["access_token"]
            # Providers that do not rotate refresh tokens omit the field.
            credential.refresh_token = tokens.get("refresh_token") or credential.refresh_token
            credential.expires_at = expiry_from(self._clock(), tokens.get("expires_in"))
            if tokens.get("id_token"):
                credential.id_token = tokens["id_token"]
            if tokens.get("scope"):
                credential.scopes = tokens["scope"].replace(",", " ").split()
            credential.generation += 1

            self.schedule_refresh(pid, credential)
            logger.info("Refreshed credential for %s (generation %d)", pid, credential.generation)
            self.events.publish(TokenRefreshed(provider_id=pid, credential=credential))
            return credential

    def disconnect(self, provider_id: str) -> bool:
        """Cancel the timer, then drop the credential. Returns False if not connected."""
        pid = provider_id.lower()
        self.scheduler.cancel(pid)
        credential = self._credentials.pop(pid, None)
        if credential is None:
            return False
        logger.info("Disconnected %s", pid)
        self.events.publish(Disconnected(provider_id=pid))
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, provider_id: str) -> Optional[Credential]:
        return self._credentials.get(provider_id.lower())

    def is_active(self, provider_id: str) -> bool:
        """True iff a credential exists and its expiry is strictly in the future."""
        credential = self.get(provider_id)
        return credential is not None and credential.expires_at > self._clock()

    def connections(self) -> list[Credential]:
        return list(self._credentials.values())

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        self.scheduler.cancel_all()
        await self.http.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, provider_id: str) -> asyncio.Lock:
        lock = self._locks.get(provider_id)
        if lock is None:
            lock = self._locks[provider_id] = asyncio.Lock()
        return lock

    def _is_current(self, provider_id: str, credential: Credential, generation: int) -> bool:
        return self._credentials.get(provider_id) is credential and credential.generation == generation

    def _expire(self, provider_id: str, reason: str) -> None:
        self.scheduler.cancel(provider_id)
        self._credentials.pop(provider_id, None)
        logger.warning("Connection for %s expired: %s", provider_id, reason)
        self.events.publish(ConnectionExpired(provider_id=provider_id, reason=reason))
