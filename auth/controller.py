"""
auth/controller.py -- Starts OAuth flows and consumes their callbacks.

Flow:
  initiate_flow()  -> generate verifier/challenge/state(/nonce), store the
                      PkceSession, return the provider authorization URL.
  handle_callback() -> consume the session (single use), exchange the code,
                      check the id_token nonce, fetch identity, hand the
                      Credential to the lifecycle manager.

Security notes:
  [S1] The session is consumed before the token exchange. A failed exchange
       therefore still burns the state -- replaying the callback fails with
       InvalidOrExpiredState instead of getting a second attempt.

  [S2] A session is only valid for the provider it was issued for. A state
       issued for "google" delivered to /auth/callback/github is rejected.

  [S3] For OIDC providers the id_token "nonce" claim must equal the nonce
       sent in the authorization request. The claims are read without
       signature verification: the token arrived directly from the provider's
       token endpoint over TLS, so the nonce check guards against code
       injection, not token forgery.

  [S4] User info is best-effort. A failed fetch is logged and recorded on
       Credential.identity_error; the connection itself is still usable for
       scans, which only need the access token.

Layer rule: no imports from api/, scanners/, or scans/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from jose import JWTError, jwt

from auth.lifecycle import CredentialLifecycleManager
from auth.pkce import code_challenge_for, generate_code_verifier, generate_nonce, generate_state
from auth.registry import ProviderRegistry
from auth.sessions import PkceSessionStore
from core.errors import InvalidOrExpiredState, TokenExchangeFailure, UserInfoFetchFailure
from core.models import Credential, PkceSession, expiry_from

logger = logging.getLogger("cloudscan.auth.controller")

# id_token claims copied into Credential.identity when present.
_IDENTITY_CLAIMS = ("sub", "email", "name", "preferred_username", "tid", "hd")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuthorizationRequest:
    authorization_url: str
    state: str


class AuthFlowController:
    """Entry point for the OAuth authorization-code + PKCE flow.

    Usage:
        controller = AuthFlowController(registry, sessions, lifecycle)
        req = controller.initiate_flow("azure", [], tenant_id="contoso.onmicrosoft.com")
        # ... user consents, provider redirects to /auth/callback/azure ...
        credential = await controller.handle_callback("azure", code, req.state)
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        sessions: PkceSessionStore,
        lifecycle: CredentialLifecycleManager,
        *,
        http: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.registry = registry
        self.sessions = sessions
        self.lifecycle = lifecycle
        self.http = http or lifecycle.http
        self._clock = clock

    def initiate_flow(
        self,
        provider_id: str,
        scopes: Optional[list[str]] = None,
        tenant_id: Optional[str] = None,
    ) -> AuthorizationRequest:
        """Create a PKCE session and return the provider authorization URL.

        Raises UnknownProvider before anything is stored. An empty scope list
        selects the configured scope override, or the provider's default
        scope groups.
        """
        config = self.registry.get(provider_id)
        flow = self.registry.flow(config.id)

        requested = list(scopes or []) or list(flow.client.scopes) or config.default_scopes()
        verifier = generate_code_verifier()
        state = generate_state()
        nonce = generate_nonce() if config.supports_nonce else None

        self.sessions.put(
            PkceSession(
                state=state,
                provider_id=config.id,
                code_verifier=verifier,
                scopes=requested,
                created_at=self._clock(),
                tenant_id=tenant_id,
                nonce=nonce,
            )
        )
        url = flow.build_auth_url(
            scopes=requested,
            state=state,
            code_challenge=code_challenge_for(verifier),
            nonce=nonce,
            tenant_id=tenant_id,
        )
        logger.info("Authorization flow started for %s (%d scopes)", config.id, len(requested))
        return AuthorizationRequest(authorization_url=url, state=state)

    async def handle_callback(self, provider_id: str, code: str, state: str) -> Credential:
        """Validate the state, exchange the code, and store the new credential.

        Raises:
            UnknownProvider:       provider_id is not in the registry.
            InvalidOrExpiredState: state unknown, consumed, expired, or issued
                                   for another provider [S1][S2].
            TokenExchangeFailure:  token endpoint refused the code, or the
                                   id_token nonce does not match [S3].
        """
        config = self.registry.get(provider_id)
        session = self.sessions.consume(state)  # [S1]
        if session is None:
            logger.warning("Callback for %s with unknown, used, or expired state", config.id)
            raise InvalidOrExpiredState()
        if session.provider_id != config.id:  # [S2]
            logger.warning("Callback for %s presented a state issued for %s", config.id, session.provider_id)
            raise InvalidOrExpiredState("OAuth state was issued for a different provider")

        flow = self.registry.flow(config.id)
        tokens = await flow.exchange_code(
            self.http,
            code=code,
            code_verifier=session.code_verifier,
            tenant_id=session.tenant_id,
        )
        claims = self._id_token_claims(config.id, tokens.get("id_token"), session.nonce)

        now = self._clock()
        granted = tokens.get("scope")
        credential = Credential(
            provider_id=config.id,
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            expires_at=expiry_from(now, tokens.get("expires_in")),
            connected_at=now,
            scopes=granted.replace(",", " ").split() if granted else list(session.scopes),
            identity={k: claims[k] for k in _IDENTITY_CLAIMS if k in claims},
            tenant_id=session.tenant_id or claims.get("tid"),
            id_token=tokens.get("id_token"),
            token_type=tokens.get("token_type") or "Bearer",
        )

        try:
            userinfo = await flow.fetch_user_info(self.http, credential.access_token)
        except UserInfoFetchFailure as e:  # [S4]
            logger.warning("%s -- continuing without identity details", e)
            credential.identity_error = e.reason
        else:
            credential.identity.update({k: v for k, v in userinfo.items() if v is not None})

        self.lifecycle.store(config.id, credential)
        return credential

    def abandon_flow(self, provider_id: str, state: str) -> bool:
        """Burn the session for a flow the provider reported as denied or failed.

        Returns True if a live session for this provider was removed.
        """
        config = self.registry.get(provider_id)
        session = self.sessions.consume(state)
        if session is None or session.provider_id != config.id:
            return False
        logger.info("Authorization flow for %s abandoned", config.id)
        return True

    def purge_expired_sessions(self) -> int:
        removed = self.sessions.purge_expired()
        if removed:
            logger.info("Purged %d expired PKCE sessions", removed)
        return removed

    @staticmethod
    def _id_token_claims(provider_id: str, id_token: Optional[str], nonce: Optional[str]) -> dict[str, Any]:
        """Return the unverified id_token claims, enforcing the nonce [S3]."""
        if not id_token:
            return {}
        try:
            claims = jwt.get_unverified_claims(id_token)
        except JWTError as e:
            raise TokenExchangeFailure(provider_id, None, f"malformed id_token: {e}") from e
        if nonce is not None and claims.get("nonce") != nonce:
            raise TokenExchangeFailure(provider_id, None, "id_token nonce does not match the authorization request")
        return claims
