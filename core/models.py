"""
core/models.py -- Domain dataclasses shared by auth/, scanners/, and scans/.

Pattern: Data class (pure data containers, near-zero logic). Stores and
managers do the work; these types own the domain shape. The API layer maps
them onto Pydantic response models in api/models.py and never exposes
Credential secrets.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True)
class ProviderConfig:
    """Static description of one identity/cloud provider. Never mutated.

    authorize_path and token_path are appended to auth_base_url and may
    contain a "{tenant}" segment for tenant-routed providers.
    """

    id: str
    name: str
    auth_base_url: str
    authorize_path: str
    token_path: str
    api_base_url: str
    userinfo_url: Optional[str]
    scopes: dict[str, tuple[str, ...]]
    default_scope_groups: tuple[str, ...]
    scan_types: tuple[str, ...]
    tenant_routed: bool = False
    default_tenant: Optional[str] = None
    supports_nonce: bool = False

    def default_scopes(self) -> list[str]:
        """Union of the default scope groups, first-occurrence order, no duplicates."""
        seen: set[str] = set()
        scopes: list[str] = []
        for group in self.default_scope_groups:
            for scope in self.scopes.get(group, ()):
                if scope not in seen:
                    seen.add(scope)
                    scopes.append(scope)
        return scopes


@dataclass
class PkceSession:
    """Authorization-flow context stored between initiate_flow and the callback."""

    state: str
    provider_id: str
    code_verifier: str
    scopes: list[str]
    created_at: datetime
    tenant_id: Optional[str] = None
    nonce: Optional[str] = None


@dataclass
class Credential:
    """The live token set for one provider connection.

    Mutated in place on refresh; generation is bumped each time so that an
    in-flight refresh can tell whether the credential it started from is
    still the one stored.
    """

    provider_id: str
    access_token: str
    expires_at: datetime
    connected_at: datetime
    refresh_token: Optional[str] = None
    scopes: list[str] = field(default_factory=list)
    identity: dict[str, Any] = field(default_factory=dict)
    tenant_id: Optional[str] = None
    id_token: Optional[str] = None
    token_type: str = "Bearer"
    generation: int = 0
    identity_error: Optional[str] = None  # set when user info was best-effort and failed

    def expires_in(self, now: datetime) -> float:
        """Seconds until expiry relative to now (negative once expired)."""
        return (self.expires_at - now).total_seconds()

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


def expiry_from(now: datetime, expires_in: Any, default: int = 3600) -> datetime:
    """Turn a token response's expires_in into an absolute instant.

    Providers send expires_in as an int, a numeric string, or omit it
    (GitHub OAuth apps without expiring tokens). Missing or malformed values
    fall back to default seconds.
    """
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        seconds = default
    return now + timedelta(seconds=seconds)


class ScanStatus(str, Enum):
    running = "running"
    completed = "completed"
    failed = "failed"


@dataclass
class ScanResult:
    """Structured output of one provider scan: summary counts plus raw findings."""

    provider_id: str
    scan_type: str
    timestamp: str
    summary: dict[str, Any]
    results: dict[str, list[dict[str, Any]]]

    @property
    def findings(self) -> list[dict[str, Any]]:
        """Every raw finding across all categories, in category order."""
        flat: list[dict[str, Any]] = []
        for items in self.results.values():
            flat.extend(items)
        return flat

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ScanRecord:
    """Lifecycle record for one scan invocation. Terminal records are immutable."""

    scan_id: str
    provider_id: str
    scan_type: str
    status: ScanStatus
    started_at: str
    ended_at: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status is not ScanStatus.running
