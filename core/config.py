"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for CloudScan happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. azure_client_id -> AZURE_CLIENT_ID). Type coercion and validation
      are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used to reject a malformed PUBLIC_ORIGIN,
      which would otherwise produce redirect URIs the providers refuse.

Provider credentials:
  Each provider reads {PROVIDER}_CLIENT_ID, {PROVIDER}_CLIENT_SECRET,
  {PROVIDER}_TENANT_ID and {PROVIDER}_SCOPES. An empty client ID means the
  provider is not configured; the flow can still be started (the provider
  will reject it) so that misconfiguration shows up in provider error pages
  rather than as a silent 404 here.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, scanners/, or scans/.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import urlparse

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("cloudscan.config")


@dataclass(frozen=True)
class ProviderClient:
    """OAuth client registration for one provider, as read from the environment."""

    client_id: str
    client_secret: str
    tenant_id: str | None = None
    scopes: tuple[str, ...] = ()

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Scheme + host (+ port) the browser sees. Redirect URIs are built as
    # {public_origin}/auth/callback/{provider_id} and must match the client
    # registration at each provider exactly.
    public_origin: str = "http://localhost:8000"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Auth flow / credential lifecycle
    # ------------------------------------------------------------------

    session_ttl_seconds: int = 600
    refresh_margin_seconds: int = 300

    # ------------------------------------------------------------------
    # Network + scans
    # ------------------------------------------------------------------

    http_timeout_seconds: float = 10.0
    scan_timeout_seconds: float = 300.0
    scan_max_pages: int = 20
    github_max_repositories: int = 10
    scan_retention_seconds: int = 7 * 24 * 60 * 60
    scan_db_url: str = ""  # empty -> scans/cloudscan_scans.db

    aws_region: str = "us-east-1"
    google_organization_id: str = ""

    # ------------------------------------------------------------------
    # OAuth clients (empty client ID means the provider is not configured)
    # ------------------------------------------------------------------

    azure_client_id: str = ""
    azure_client_secret: str = ""
    azure_tenant_id: str = ""
    azure_scopes: str = ""

    aws_client_id: str = ""
    aws_client_secret: str = ""
    aws_tenant_id: str = ""
    aws_scopes: str = ""

    google_client_id: str = ""
    google_client_secret: str = ""
    google_tenant_id: str = ""  # Workspace customer ID
    google_scopes: str = ""

    github_client_id: str = ""
    github_client_secret: str = ""
    github_tenant_id: str = ""
    github_scopes: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_origin(self) -> "Settings":
        """Reject a PUBLIC_ORIGIN that cannot be used to build redirect URIs.

        The origin must be http(s) with a host and no path; a trailing slash
        is stripped so that "{origin}/auth/callback/x" never contains "//".
        """
        origin = self.public_origin.rstrip("/")
        parsed = urlparse(origin)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"PUBLIC_ORIGIN must be an http(s) origin, got {self.public_origin!r}")
        if parsed.path or parsed.query or parsed.fragment:
            raise ValueError("PUBLIC_ORIGIN must not contain a path, query, or fragment.")
        if parsed.scheme == "http" and not self.debug and parsed.hostname not in ("localhost", "127.0.0.1"):
            logger.warning("PUBLIC_ORIGIN uses plain http for a non-local host -- OAuth codes travel unencrypted")
        self.public_origin = origin
        if self.refresh_margin_seconds < 0:
            raise ValueError("REFRESH_MARGIN_SECONDS must be >= 0.")
        return self

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def client_for(self, provider_id: str) -> ProviderClient:
        """Return the OAuth client registration for provider_id.

        Unknown provider ids return an empty (unconfigured) ProviderClient;
        the provider registry is the authority on which ids exist.
        """
        prefix = provider_id.lower()
        scopes = getattr(self, f"{prefix}_scopes", "")
        return ProviderClient(
            client_id=getattr(self, f"{prefix}_client_id", ""),
            client_secret=getattr(self, f"{prefix}_client_secret", ""),
            tenant_id=getattr(self, f"{prefix}_tenant_id", "") or None,
            scopes=tuple(scopes.split()),
        )

    def redirect_uri(self, provider_id: str) -> str:
        return f"{self.public_origin}/auth/callback/{provider_id}"


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings()
    directly, except tests, which build their own Settings(...) and inject it.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
