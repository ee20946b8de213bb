"""
auth/flows.py -- Per-provider OAuth flow strategies.

One ProviderFlow subclass per provider keeps each provider's quirks in one
place instead of switching on provider id inside shared functions:

  AzureFlow  -- substitutes the tenant into /{tenant}/oauth2/v2.0/...; a flow
                started without a tenant uses the multi-tenant "common" route.
  AwsFlow    -- console-redirect consent: builds its own query string with no
                PKCE parameters, and so sends no code_verifier on exchange.
  GoogleFlow -- adds access_type=offline + prompt=consent, otherwise Google
                issues no refresh token after the first consent.
  GitHubFlow -- static endpoints; GitHub answers token errors with HTTP 200
                and an "error" field, which the shared parser already treats
                as a failure.

Every flow shares the token request code: form-encoded POST with
Accept: application/json. The HTTP client is passed in by the caller so its
timeout and transport are owned by the controller / lifecycle manager.

Layer rule: no imports from api/, scanners/, or scans/.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from core.config import ProviderClient, Settings
from core.errors import TokenExchangeFailure, TokenRefreshFailure, UserInfoFetchFailure
from core.models import ProviderConfig

logger = logging.getLogger("cloudscan.auth.flow")


class ProviderFlow:
    """Generic authorization-code + PKCE flow; subclasses override the quirks."""

    def __init__(self, config: ProviderConfig, settings: Settings) -> None:
        self.config = config
        self.settings = settings

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    @property
    def client(self) -> ProviderClient:
        return self.settings.client_for(self.config.id)

    @property
    def redirect_uri(self) -> str:
        return self.settings.redirect_uri(self.config.id)

    def resolve_tenant(self, tenant_id: Optional[str]) -> Optional[str]:
        """Tenant precedence: explicit argument, configured tenant, provider default."""
        if not self.config.tenant_routed:
            return tenant_id
        return tenant_id or self.client.tenant_id or self.config.default_tenant

    def _endpoint(self, path: str, tenant_id: Optional[str]) -> str:
        if "{tenant}" in path:
            path = path.replace("{tenant}", self.resolve_tenant(tenant_id) or "")
        if path.startswith("https://"):
            return path
        return f"{self.config.auth_base_url}{path}"

    def authorization_endpoint(self, tenant_id: Optional[str] = None) -> str:
        return self._endpoint(self.config.authorize_path, tenant_id)

    def token_endpoint(self, tenant_id: Optional[str] = None) -> str:
        return self._endpoint(self.config.token_path, tenant_id)

    # ------------------------------------------------------------------
    # Authorization URL
    # ------------------------------------------------------------------

    def extra_authorize_params(self) -> dict[str, str]:
        return {}

    def build_auth_url(
        self,
        *,
        scopes: list[str],
        state: str,
        code_challenge: str,
        nonce: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> str:
        params = {
            "client_id": self.client.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(scopes),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        if nonce:
            params["nonce"] = nonce
        params.update(self.extra_authorize_params())
        return f"{self.authorization_endpoint(tenant_id)}?{urlencode(params)}"

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    def exchange_params(self, code: str, code_verifier: str) -> dict[str, str]:
        return {
            "grant_type": "authorization_code",
            "client_id": self.client.client_id,
            "client_secret": self.client.client_secret,
            "code": code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": code_verifier,
        }

    async def exchange_code(
        self,
        http: httpx.AsyncClient,
        *,
        code: str,
        code_verifier: str,
        tenant_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Exchange an authorization code for tokens. Raises TokenExchangeFailure."""
        data = self.exchange_params(code, code_verifier)
        return await self._token_request(http, data, tenant_id, TokenExchangeFailure)

    async def refresh(
        self,
        http: httpx.AsyncClient,
        *,
        refresh_token: str,
        tenant_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Redeem a refresh token. Raises TokenRefreshFailure."""
        data = {
            "grant_type": "refresh_token",
            "client_id": self.client.client_id,
            "client_secret": self.client.client_secret,
            "refresh_token": refresh_token,
        }
        return await self._token_request(http, data, tenant_id, TokenRefreshFailure)

    async def _token_request(
        self,
        http: httpx.AsyncClient,
        data: dict[str, str],
        tenant_id: Optional[str],
        error_cls: type[TokenExchangeFailure] | type[TokenRefreshFailure],
    ) -> dict[str, Any]:
        url = self.token_endpoint(tenant_id)
        try:
            resp = await http.post(url, data=data, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            logger.warning("%s token request to %s failed: %s", self.config.id, url, e)
            raise error_cls(self.config.id, None, str(e)) from e

        if not resp.is_success:
            logger.warning("%s token endpoint returned %d", self.config.id, resp.status_code)
            raise error_cls(self.config.id, resp.status_code, resp.text)

        try:
            payload = resp.json()
        except ValueError as e:
            raise error_cls(self.config.id, resp.status_code, resp.text) from e

        if not isinstance(payload, dict) or "error" in payload or not payload.get("access_token"):
            raise error_cls(self.config.id, resp.status_code, resp.text)
        return payload

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    def api_headers(self, access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}

    def normalize_identity(self, raw: dict[str, Any]) -> dict[str, Any]:
        return {
            "sub": raw.get("sub"),
            "email": raw.get("email"),
            "name": raw.get("name"),
        }

    async def fetch_user_info(self, http: httpx.AsyncClient, access_token: str) -> dict[str, Any]:
        """Fetch and normalize the signed-in identity. Raises UserInfoFetchFailure.

        Providers without a user-info endpoint return an empty dict.
        """
        url = self.config.userinfo_url
        if not url:
            return {}
        try:
            resp = await http.get(url, headers=self.api_headers(access_token))
        except httpx.HTTPError as e:
            raise UserInfoFetchFailure(self.config.id, str(e)) from e
        if not resp.is_success:
            raise UserInfoFetchFailure(self.config.id, f"HTTP {resp.status_code}")
        try:
            raw = resp.json()
        except ValueError as e:
            raise UserInfoFetchFailure(self.config.id, "response is not JSON") from e
        return self.normalize_identity(raw)


class AzureFlow(ProviderFlow):
    def normalize_identity(self, raw: dict[str, Any]) -> dict[str, Any]:
        # Graph /me: id is the object ID, mail is often null for guest accounts.
        return {
            "sub": raw.get("id"),
            "email": raw.get("mail") or raw.get("userPrincipalName"),
            "name": raw.get("displayName"),
        }


class AwsFlow(ProviderFlow):
    def build_auth_url(
        self,
        *,
        scopes: list[str],
        state: str,
        code_challenge: str,
        nonce: Optional[str] = None,
        tenant_id: Optional[str] = None,
    ) -> str:
        params = {
            "client_id": self.client.client_id,
            "response_type": "code",
            "scope": " ".join(scopes),
            "redirect_uri": self.redirect_uri,
            "state": state,
        }
        return f"{self.authorization_endpoint(tenant_id)}?{urlencode(params)}"

    def exchange_params(self, code: str, code_verifier: str) -> dict[str, str]:
        params = super().exchange_params(code, code_verifier)
        # No challenge was sent, so a verifier would be rejected.
        params.pop("code_verifier")
        return params


class GoogleFlow(ProviderFlow):
    def extra_authorize_params(self) -> dict[str, str]:
        return {"access_type": "offline", "prompt": "consent", "include_granted_scopes": "true"}


class GitHubFlow(ProviderFlow):
    def api_headers(self, access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def normalize_identity(self, raw: dict[str, Any]) -> dict[str, Any]:
        return {
            "sub": str(raw["id"]) if raw.get("id") is not None else None,
            "email": raw.get("email"),
            "name": raw.get("name") or raw.get("login"),
            "login": raw.get("login"),
        }


_FLOW_CLASSES: dict[str, type[ProviderFlow]] = {
    "azure": AzureFlow,
    "aws": AwsFlow,
    "google": GoogleFlow,
    "github": GitHubFlow,
}


def flow_for(config: ProviderConfig, settings: Settings) -> ProviderFlow:
    """Instantiate the flow strategy for config; unlisted providers get the generic flow."""
    return _FLOW_CLASSES.get(config.id, ProviderFlow)(config, settings)
