"""
api/limiter.py -- Shared slowapi rate limiter instance.

api/main.py mounts it as middleware; api/routes/v1/*.py apply per-route
limits with @limiter.limit(). A single instance means every route shares the
same in-memory counter store.

The OAuth authorize and callback routes carry the tightest limits: each
authorize call holds a server-side PKCE session until its TTL runs out.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
