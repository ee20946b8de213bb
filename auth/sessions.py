"""
auth/sessions.py -- Short-lived, single-use PKCE session store.

Holds the authorization-flow context (code verifier, scopes, tenant, nonce)
between initiate_flow() and the provider callback, keyed by the opaque state
value. Each session is consumed at most once: consume() removes the entry
before returning it, so a replayed callback finds nothing. Sessions older
than the TTL (default 10 minutes) are rejected on lookup and removed by
purge_expired(), which the API lifespan calls periodically.

The store is in-process memory guarded by a lock. A deployment running
several workers must pin callbacks to the worker that issued the state (or
swap in a shared store with the same three methods).

Usage:
    sessions = PkceSessionStore(ttl=600)
    sessions.put(session)
    session = sessions.consume(state)    # returns PkceSession or None
    sessions.purge_expired()             # call periodically to trim old entries
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from core.models import PkceSession

_DEFAULT_TTL = 10 * 60  # 10 minutes in seconds


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PkceSessionStore:
    def __init__(self, ttl: int = _DEFAULT_TTL, clock: Callable[[], datetime] = _utcnow) -> None:
        self.ttl = ttl
        self._clock = clock
        self._sessions: dict[str, PkceSession] = {}
        self._lock = threading.Lock()

    def put(self, session: PkceSession) -> None:
        """Store session under its state, replacing any entry with the same state."""
        with self._lock:
            self._sessions[session.state] = session

    def consume(self, state: str) -> Optional[PkceSession]:
        """Remove and return the session for state if it exists and hasn't expired.

        The entry is removed whether or not it has expired, so an expired
        state cannot be retried either.
        """
        with self._lock:
            session = self._sessions.pop(state, None)
        if session is None or self._is_expired(session):
            return None
        return session

    def __contains__(self, state: str) -> bool:
        with self._lock:
            return state in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def purge_expired(self) -> int:
        """Delete all entries older than TTL. Returns number of entries removed."""
        with self._lock:
            expired = [state for state, s in self._sessions.items() if self._is_expired(s)]
            for state in expired:
                del self._sessions[state]
        return len(expired)

    def _is_expired(self, session: PkceSession) -> bool:
        return self._clock() - session.created_at > timedelta(seconds=self.ttl)
