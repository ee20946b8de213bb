"""Unit tests for auth/flows.py -- per-provider URL, token, and identity quirks.

All provider endpoints are served by ProviderStub through httpx.MockTransport.

Covers:
- Authorization URLs: PKCE params, Azure tenant routing, AWS console
  redirect without PKCE, Google offline access
- Token exchange: form fields, Accept header, error shapes -> TokenExchangeFailure
- Refresh: TokenRefreshFailure on rejection
- User info: normalization per provider, failures -> UserInfoFetchFailure
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from auth.registry import ProviderRegistry
from core.errors import TokenExchangeFailure, TokenRefreshFailure, UserInfoFetchFailure
from stubs import make_settings, reply

GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
AZURE_TOKEN_URL = "https://login.microsoftonline.com/contoso.onmicrosoft.com/oauth2/v2.0/token"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
AWS_TOKEN_URL = "https://signin.aws.amazon.com/oauth/token"


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


# ---------------------------------------------------------------------------
# Authorization URL
# ---------------------------------------------------------------------------


class TestAuthorizationUrl:
    def test_generic_pkce_params(self, registry):
        url = registry.flow("github").build_auth_url(
            scopes=["repo", "read:org"], state="st", code_challenge="ch"
        )
        assert url.startswith("https://github.com/login/oauth/authorize?")
        params = _query(url)
        assert params == {
            "client_id": "github-client",
            "response_type": "code",
            "redirect_uri": "http://localhost:8000/auth/callback/github",
            "scope": "repo read:org",
            "state": "st",
            "code_challenge": "ch",
            "code_challenge_method": "S256",
        }

    def test_azure_substitutes_tenant(self, registry):
        url = registry.flow("azure").build_auth_url(
            scopes=["openid"], state="st", code_challenge="ch", nonce="n1", tenant_id="contoso.onmicrosoft.com"
        )
        assert url.startswith("https://login.microsoftonline.com/contoso.onmicrosoft.com/oauth2/v2.0/authorize?")
        assert _query(url)["nonce"] == "n1"

    def test_azure_defaults_to_common_tenant(self, registry):
        url = registry.flow("azure").build_auth_url(scopes=["openid"], state="st", code_challenge="ch")
        assert urlparse(url).path == "/common/oauth2/v2.0/authorize"

    def test_azure_configured_tenant_used_when_none_given(self):
        registry = ProviderRegistry(make_settings(azure_tenant_id="fabrikam.com"))
        url = registry.flow("azure").build_auth_url(scopes=["openid"], state="st", code_challenge="ch")
        assert urlparse(url).path == "/fabrikam.com/oauth2/v2.0/authorize"

    def test_aws_console_redirect_has_no_pkce(self, registry):
        url = registry.flow("aws").build_auth_url(scopes=["security-audit"], state="st", code_challenge="ch")
        assert url.startswith("https://signin.aws.amazon.com/oauth?")
        assert set(_query(url)) == {"client_id", "response_type", "scope", "redirect_uri", "state"}

    def test_google_requests_offline_access(self, registry):
        params = _query(
            registry.flow("google").build_auth_url(scopes=["openid"], state="st", code_challenge="ch", nonce="n")
        )
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        assert params["code_challenge_method"] == "S256"

    def test_google_token_endpoint_is_absolute(self, registry):
        assert registry.flow("google").token_endpoint() == GOOGLE_TOKEN_URL


# ---------------------------------------------------------------------------
# Token exchange
# ---------------------------------------------------------------------------


class TestExchangeCode:
    @pytest.mark.asyncio
    async def test_sends_pkce_form_and_returns_tokens(self, registry, stub):
        stub.on(
            "POST",
            GITHUB_TOKEN_URL,
            reply(json={"access_token": "gho_1", "scope": "repo", "token_type": "bearer"}),
        )

        tokens = await registry.flow("github").exchange_code(stub.client(), code="c0de", code_verifier="ver")

        assert tokens["access_token"] == "gho_1"
        request = stub.calls("POST", GITHUB_TOKEN_URL)[0]
        assert request.headers["accept"] == "application/json"
        assert _form(request) == {
            "grant_type": "authorization_code",
            "client_id": "github-client",
            "client_secret": "github-secret",
            "code": "c0de",
            "redirect_uri": "http://localhost:8000/auth/callback/github",
            "code_verifier": "ver",
        }

    @pytest.mark.asyncio
    async def test_azure_posts_to_tenant_token_endpoint(self, registry, stub):
        stub.on("POST", AZURE_TOKEN_URL, reply(json={"access_token": "az", "expires_in": 3599}))
        tokens = await registry.flow("azure").exchange_code(
            stub.client(), code="c", code_verifier="v", tenant_id="contoso.onmicrosoft.com"
        )
        assert tokens["access_token"] == "az"

    @pytest.mark.asyncio
    async def test_aws_exchange_omits_verifier(self, registry, stub):
        stub.on("POST", AWS_TOKEN_URL, reply(json={"access_token": "aws"}))
        await registry.flow("aws").exchange_code(stub.client(), code="c", code_verifier="v")
        assert "code_verifier" not in _form(stub.calls("POST", AWS_TOKEN_URL)[0])

    @pytest.mark.asyncio
    async def test_non_2xx_raises_with_status_and_body(self, registry, stub):
        stub.on("POST", GOOGLE_TOKEN_URL, reply(400, json={"error": "invalid_grant"}))
        with pytest.raises(TokenExchangeFailure) as exc_info:
            await registry.flow("google").exchange_code(stub.client(), code="c", code_verifier="v")
        assert exc_info.value.status_code == 400
        assert "invalid_grant" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_error_field_in_200_raises(self, registry, stub):
        stub.on("POST", GITHUB_TOKEN_URL, reply(json={"error": "bad_verification_code"}))
        with pytest.raises(TokenExchangeFailure):
            await registry.flow("github").exchange_code(stub.client(), code="c", code_verifier="v")

    @pytest.mark.asyncio
    async def test_missing_access_token_raises(self, registry, stub):
        stub.on("POST", GITHUB_TOKEN_URL, reply(json={"token_type": "bearer"}))
        with pytest.raises(TokenExchangeFailure):
            await registry.flow("github").exchange_code(stub.client(), code="c", code_verifier="v")

    @pytest.mark.asyncio
    async def test_transport_error_raises_without_status(self, registry, stub):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        stub.on("POST", GITHUB_TOKEN_URL, boom)
        with pytest.raises(TokenExchangeFailure) as exc_info:
            await registry.flow("github").exchange_code(stub.client(), code="c", code_verifier="v")
        assert exc_info.value.status_code is None


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_grant(self, registry, stub):
        stub.on("POST", GOOGLE_TOKEN_URL, reply(json={"access_token": "ya29.new", "expires_in": 3600}))
        tokens = await registry.flow("google").refresh(stub.client(), refresh_token="1//rt")
        assert tokens["access_token"] == "ya29.new"
        form = _form(stub.calls("POST", GOOGLE_TOKEN_URL)[0])
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "1//rt"

    @pytest.mark.asyncio
    async def test_rejected_refresh_raises_refresh_failure(self, registry, stub):
        stub.on("POST", GOOGLE_TOKEN_URL, reply(400, json={"error": "invalid_grant"}))
        with pytest.raises(TokenRefreshFailure):
            await registry.flow("google").refresh(stub.client(), refresh_token="revoked")


# ---------------------------------------------------------------------------
# User info
# ---------------------------------------------------------------------------


class TestUserInfo:
    @pytest.mark.asyncio
    async def test_github_identity_normalized(self, registry, stub):
        stub.on("GET", "https://api.github.com/user", reply(json={"id": 42, "login": "octocat", "name": None}))
        identity = await registry.flow("github").fetch_user_info(stub.client(), "gho_1")
        assert identity["sub"] == "42"
        assert identity["login"] == "octocat"
        assert identity["name"] == "octocat"
        assert stub.requests[0].headers["authorization"] == "Bearer gho_1"

    @pytest.mark.asyncio
    async def test_azure_graph_me_normalized(self, registry, stub):
        stub.on(
            "GET",
            "https://graph.microsoft.com/v1.0/me",
            reply(json={"id": "oid-1", "mail": None, "userPrincipalName": "ada@contoso.com", "displayName": "Ada"}),
        )
        identity = await registry.flow("azure").fetch_user_info(stub.client(), "tok")
        assert identity == {"sub": "oid-1", "email": "ada@contoso.com", "name": "Ada"}

    @pytest.mark.asyncio
    async def test_aws_has_no_userinfo_endpoint(self, registry, stub):
        assert await registry.flow("aws").fetch_user_info(stub.client(), "tok") == {}
        assert stub.requests == []

    @pytest.mark.asyncio
    async def test_failure_raises_userinfo_error(self, registry, stub):
        stub.on("GET", "https://api.github.com/user", reply(500, text="upstream down"))
        with pytest.raises(UserInfoFetchFailure) as exc_info:
            await registry.flow("github").fetch_user_info(stub.client(), "gho_1")
        assert exc_info.value.reason == "HTTP 500"
