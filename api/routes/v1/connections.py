"""
api/routes/v1/connections.py -- Provider connection REST endpoints.

Routes:
  POST   /api/v1/connections/{provider_id}/authorize -- start an OAuth + PKCE flow
  GET    /auth/callback/{provider_id}                -- provider redirect target
  GET    /api/v1/connections                         -- active connections
  GET    /api/v1/connections/{provider_id}           -- one connection
  POST   /api/v1/connections/{provider_id}/refresh   -- refresh now
  DELETE /api/v1/connections/{provider_id}           -- disconnect

The callback lives on its own router (callback_router) because its path is
fixed by the redirect URI registered with each provider and does not carry
the /api/v1 prefix.

Security:
  [S1] Responses are built with ConnectionResponse.from_credential(), which
       has no token fields. Access, refresh, and id tokens never leave the
       process.
  [S2] authorize and callback are rate-limited per client IP; each authorize
       call creates a server-side session until its TTL runs out.
  [S3] Cache-Control: no-store on callback responses.
  [S4] A provider-reported error (?error=access_denied) burns the state so
       the same flow cannot be completed afterwards.

All handlers are async: the lifecycle manager and its refresh timers belong
to the event loop and must not be touched from the threadpool.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import AuthorizeRequest, AuthorizeResponse, ConnectionResponse, ErrorDetail
from core.errors import NoActiveConnection

router = APIRouter()
callback_router = APIRouter()


def _not_connected(provider_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(
            code="not_connected",
            message=f"No connection for provider: {provider_id}",
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Authorization flow
# ---------------------------------------------------------------------------


@limiter.limit("10/minute")  # [S2]
@router.post("/connections/{provider_id}/authorize", response_model=AuthorizeResponse)
async def authorize(request: Request, provider_id: str, body: AuthorizeRequest) -> AuthorizeResponse:
    """Create a PKCE session and return the URL the user must visit.

    UnknownProvider (404) is raised before any session is stored.
    """
    controller = request.app.state.controller
    auth_request = controller.initiate_flow(provider_id, body.scopes, tenant_id=body.tenant_id)
    return AuthorizeResponse(authorization_url=auth_request.authorization_url, state=auth_request.state)


@limiter.limit("20/minute")  # [S2]
@callback_router.get("/auth/callback/{provider_id}", response_model=ConnectionResponse)
async def oauth_callback(
    request: Request,
    provider_id: str,
    code: Annotated[Optional[str], Query(max_length=4096)] = None,
    state: Annotated[Optional[str], Query(max_length=512)] = None,
    error: Annotated[Optional[str], Query(max_length=256)] = None,
    error_description: Annotated[Optional[str], Query(max_length=1024)] = None,
) -> JSONResponse:
    """Complete the flow: validate state, exchange the code, store the credential.

    InvalidOrExpiredState maps to 400 and TokenExchangeFailure to 502 via the
    app-level exception handlers.
    """
    controller = request.app.state.controller

    if error:
        if state:
            controller.abandon_flow(provider_id, state)  # [S4]
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(
                code="authorization_denied",
                message=f"Provider returned error: {error}",
                detail=error_description,
            ).model_dump(),
        )
    if not code or not state:
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(
                code="missing_parameters",
                message="Callback requires both 'code' and 'state' query parameters.",
            ).model_dump(),
        )

    credential = await controller.handle_callback(provider_id, code, state)
    lifecycle = request.app.state.lifecycle
    payload = ConnectionResponse.from_credential(credential, lifecycle.is_active(credential.provider_id))
    response = JSONResponse(content=payload.model_dump(mode="json"))
    response.headers["Cache-Control"] = "no-store"  # [S3]
    return response


# ---------------------------------------------------------------------------
# Connection management
# ---------------------------------------------------------------------------


@limiter.limit("60/minute")
@router.get("/connections", response_model=list[ConnectionResponse])
async def list_connections(request: Request) -> list[ConnectionResponse]:
    lifecycle = request.app.state.lifecycle
    return [
        ConnectionResponse.from_credential(c, lifecycle.is_active(c.provider_id))  # [S1]
        for c in lifecycle.connections()
    ]


@limiter.limit("60/minute")
@router.get("/connections/{provider_id}", response_model=ConnectionResponse)
async def get_connection(request: Request, provider_id: str) -> ConnectionResponse:
    config = request.app.state.registry.get(provider_id)
    lifecycle = request.app.state.lifecycle
    credential = lifecycle.get(config.id)
    if credential is None:
        raise _not_connected(config.id)
    return ConnectionResponse.from_credential(credential, lifecycle.is_active(config.id))


@limiter.limit("10/minute")
@router.post("/connections/{provider_id}/refresh", response_model=ConnectionResponse)
async def refresh_connection(request: Request, provider_id: str) -> ConnectionResponse:
    """Refresh the access token now instead of waiting for the timer.

    A failed refresh is terminal for the connection, exactly as when the
    timer fires: the credential is removed and ConnectionExpired published.
    """
    config = request.app.state.registry.get(provider_id)
    lifecycle = request.app.state.lifecycle
    if lifecycle.get(config.id) is None:
        raise NoActiveConnection(config.id)

    credential = await lifecycle.refresh(config.id)
    if credential is None:
        raise HTTPException(
            status_code=502,
            detail=ErrorDetail(
                code="refresh_failed",
                message=f"Token refresh failed for {config.id}; the connection has expired.",
            ).model_dump(),
        )
    return ConnectionResponse.from_credential(credential, lifecycle.is_active(config.id))


@limiter.limit("30/minute")
@router.delete("/connections/{provider_id}", status_code=204)
async def disconnect(request: Request, provider_id: str) -> Response:
    config = request.app.state.registry.get(provider_id)
    if not request.app.state.lifecycle.disconnect(config.id):
        raise _not_connected(config.id)
    return Response(status_code=204)
