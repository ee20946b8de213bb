"""
API request and response models for CloudScan REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two.

Credential secrets (access, refresh, and id tokens) have no field here: the
connection responses are built from an allow-list, never from the dataclass.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.models import Credential, ScanRecord

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Scope strings and tenant ids are echoed into provider URLs; keep them to
# printable, space-free characters.
SCOPE_PATTERN = r"^[\x21-\x7e]{1,256}$"
TENANT_PATTERN = r"^[A-Za-z0-9.\-_]{1,128}$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ScanStatusEnum(str, Enum):
    running = "running"
    completed = "completed"
    failed = "failed"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class AuthorizeRequest(BaseModel):
    """Request body for POST /api/v1/connections/{provider_id}/authorize.

    An empty scopes list asks for the provider's default scope set.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    scopes: list[str] = Field(default_factory=list, max_length=100)
    tenant_id: Optional[str] = Field(default=None, pattern=TENANT_PATTERN)

    @field_validator("scopes")
    @classmethod
    def validate_scopes(cls, v: list[str]) -> list[str]:
        cleaned: list[str] = []
        for scope in v:
            scope = scope.strip()
            if not scope:
                continue
            if not re.match(SCOPE_PATTERN, scope):
                raise ValueError(f"Invalid scope: {scope[:50]!r}")
            if scope not in cleaned:
                cleaned.append(scope)
        return cleaned


class ScanRequest(BaseModel):
    """Request body for POST /api/v1/scans."""

    model_config = ConfigDict(str_strip_whitespace=True)

    provider_id: str = Field(min_length=1, max_length=30)
    scan_type: str = Field(min_length=1, max_length=50)
    options: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class ProviderInfo(BaseModel):
    id: str
    name: str
    configured: bool
    tenant_routed: bool
    scopes: dict[str, list[str]]
    default_scopes: list[str]
    scan_types: list[str]


class AuthorizeResponse(BaseModel):
    authorization_url: str
    state: str


class ConnectionResponse(BaseModel):
    """A provider connection without any token material."""

    provider_id: str
    active: bool
    connected_at: datetime
    expires_at: datetime
    scopes: list[str]
    identity: dict[str, Any]
    tenant_id: Optional[str] = None
    refreshable: bool
    generation: int
    identity_error: Optional[str] = None

    @classmethod
    def from_credential(cls, credential: Credential, active: bool) -> "ConnectionResponse":
        return cls(
            provider_id=credential.provider_id,
            active=active,
            connected_at=credential.connected_at,
            expires_at=credential.expires_at,
            scopes=credential.scopes,
            identity=credential.identity,
            tenant_id=credential.tenant_id,
            refreshable=bool(credential.refresh_token),
            generation=credential.generation,
            identity_error=credential.identity_error,
        )


class ScanStartedResponse(BaseModel):
    scan_id: str
    status: ScanStatusEnum = ScanStatusEnum.running


class ScanRecordResponse(BaseModel):
    scan_id: str
    provider_id: str
    scan_type: str
    status: ScanStatusEnum
    started_at: str
    ended_at: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def from_record(cls, record: ScanRecord, include_result: bool = True) -> "ScanRecordResponse":
        return cls(
            scan_id=record.scan_id,
            provider_id=record.provider_id,
            scan_type=record.scan_type,
            status=ScanStatusEnum(record.status.value),
            started_at=record.started_at,
            ended_at=record.ended_at,
            result=record.result if include_result else None,
            error=record.error,
        )
