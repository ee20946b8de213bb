"""
api/routes/v1/providers.py -- Provider catalog endpoint.

Routes:
  GET /api/v1/providers -- registered providers, scope catalog, scan types

Only non-secret registry data is returned. `configured` tells the UI whether
a client id is present; the client secret never leaves core/config.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from api.limiter import limiter
from api.models import ProviderInfo

router = APIRouter()


@limiter.limit("60/minute")
@router.get("/providers", response_model=list[ProviderInfo])
def list_providers(request: Request) -> list[ProviderInfo]:
    registry = request.app.state.registry
    return [
        ProviderInfo(
            id=config.id,
            name=config.name,
            configured=registry.is_configured(config.id),
            tenant_routed=config.tenant_routed,
            scopes={purpose: list(scopes) for purpose, scopes in config.scopes.items()},
            default_scopes=config.default_scopes(),
            scan_types=list(config.scan_types),
        )
        for config in registry.all()
    ]
