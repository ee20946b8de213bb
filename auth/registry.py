"""
auth/registry.py -- Static provider catalog and the registry that serves it.

PROVIDERS is built once at import time and never mutated. ProviderRegistry
is the single lookup point: it raises UnknownProvider for ids outside the
catalog and hands out the per-provider flow strategy (auth/flows.py) that
owns each provider's URL and token-exchange quirks.

Scope catalogs are grouped by purpose. When a caller starts a flow without
naming scopes, the union of the provider's default_scope_groups is requested.

Supported providers:
  azure  -- Microsoft Entra ID; tenant-routed endpoints, OIDC nonce.
  aws    -- Console-redirect consent; no PKCE parameters in the URL.
  google -- Google Cloud / Workspace; OIDC nonce, offline access.
  github -- GitHub OAuth app; static endpoints, no OIDC.
"""

from __future__ import annotations

from auth.flows import ProviderFlow, flow_for
from core.config import Settings, get_settings
from core.errors import UnknownProvider
from core.models import ProviderConfig

# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

AZURE = ProviderConfig(
    id="azure",
    name="Microsoft Azure",
    auth_base_url="https://login.microsoftonline.com",
    authorize_path="/{tenant}/oauth2/v2.0/authorize",
    token_path="/{tenant}/oauth2/v2.0/token",  # noqa: S106 -- URL path, not a password
    api_base_url="https://graph.microsoft.com/v1.0",
    userinfo_url="https://graph.microsoft.com/v1.0/me",
    scopes={
        "identity": (
            "openid",
            "profile",
            "email",
            "offline_access",
            "User.Read",
            "Directory.Read.All",
            "Organization.Read.All",
        ),
        "security": (
            "SecurityEvents.Read.All",
            "SecurityActions.Read.All",
            "SecurityIncident.Read.All",
            "ThreatIndicators.Read.All",
            "IdentityRiskEvent.Read.All",
            "IdentityRiskyUser.Read.All",
        ),
        "infrastructure": (
            "https://management.azure.com/user_impersonation",
            "CloudPC.Read.All",
            "DeviceManagementConfiguration.Read.All",
            "DeviceManagementManagedDevices.Read.All",
        ),
        "office365": (
            "Mail.Read",
            "Calendars.Read",
            "Sites.Read.All",
            "Files.Read.All",
            "ThreatAssessment.Request",
            "InformationProtectionPolicy.Read",
        ),
    },
    default_scope_groups=("identity", "security", "infrastructure"),
    scan_types=("security_center", "identity_protection", "infrastructure"),
    tenant_routed=True,
    default_tenant="common",
    supports_nonce=True,
)

AWS = ProviderConfig(
    id="aws",
    name="Amazon Web Services",
    auth_base_url="https://signin.aws.amazon.com",
    authorize_path="/oauth",
    token_path="/oauth/token",  # noqa: S106 -- URL path, not a password
    api_base_url="https://securityhub.{region}.amazonaws.com",
    userinfo_url=None,
    # AWS grants IAM permissions rather than OAuth scopes; these name the
    # read-only permissions the cross-account role must carry.
    scopes={
        "security": (
            "security-audit",
            "config:Describe*",
            "cloudtrail:Describe*",
            "cloudtrail:Get*",
            "cloudtrail:List*",
            "guardduty:Get*",
            "guardduty:List*",
            "inspector:Describe*",
            "inspector:List*",
            "securityhub:Get*",
            "securityhub:List*",
            "access-analyzer:Get*",
            "access-analyzer:List*",
        ),
        "infrastructure": (
            "ec2:Describe*",
            "s3:GetBucket*",
            "s3:List*",
            "iam:Get*",
            "iam:List*",
            "organizations:Describe*",
            "organizations:List*",
            "cloudformation:Describe*",
            "cloudformation:List*",
        ),
    },
    default_scope_groups=("security",),
    scan_types=("security_hub", "guard_duty"),
)

GOOGLE = ProviderConfig(
    id="google",
    name="Google Cloud Platform",
    auth_base_url="https://accounts.google.com",
    authorize_path="/o/oauth2/v2/auth",
    token_path="https://oauth2.googleapis.com/token",  # noqa: S106 -- absolute URL, not a password
    api_base_url="https://securitycenter.googleapis.com/v1",
    userinfo_url="https://openidconnect.googleapis.com/v1/userinfo",
    scopes={
        "identity": (
            "openid",
            "email",
            "profile",
        ),
        "workspace": (
            "https://www.googleapis.com/auth/admin.directory.user.readonly",
            "https://www.googleapis.com/auth/admin.directory.group.readonly",
            "https://www.googleapis.com/auth/admin.directory.orgunit.readonly",
            "https://www.googleapis.com/auth/admin.directory.domain.readonly",
            "https://www.googleapis.com/auth/admin.reports.audit.readonly",
            "https://www.googleapis.com/auth/admin.reports.usage.readonly",
        ),
        "cloud": (
            "https://www.googleapis.com/auth/cloud-platform.read-only",
            "https://www.googleapis.com/auth/cloudkms.readonly",
            "https://www.googleapis.com/auth/logging.read",
            "https://www.googleapis.com/auth/monitoring.read",
        ),
        "security": (
            "https://www.googleapis.com/auth/cloud-identity.groups.readonly",
            "https://www.googleapis.com/auth/cloud-identity.devices.readonly",
            "https://www.googleapis.com/auth/securitycenter.readonly",
        ),
    },
    default_scope_groups=("identity", "workspace", "cloud", "security"),
    scan_types=("security_center", "workspace_audit"),
    supports_nonce=True,
)

GITHUB = ProviderConfig(
    id="github",
    name="GitHub",
    auth_base_url="https://github.com",
    authorize_path="/login/oauth/authorize",
    token_path="/login/oauth/access_token",  # noqa: S106 -- URL path, not a password
    api_base_url="https://api.github.com",
    userinfo_url="https://api.github.com/user",
    scopes={
        "repos": ("repo", "security_events"),
        "organizations": ("read:org", "read:user", "user:email"),
        "security": ("security_events",),
    },
    default_scope_groups=("repos", "organizations", "security"),
    scan_types=("code_security",),
)

PROVIDERS: dict[str, ProviderConfig] = {p.id: p for p in (AZURE, AWS, GOOGLE, GITHUB)}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ProviderRegistry:
    """Lookup of provider configs and their flow strategies.

    Usage:
        registry = ProviderRegistry()
        config = registry.get("azure")        # raises UnknownProvider
        flow = registry.flow("azure")         # AzureFlow bound to settings
    """

    def __init__(
        self,
        settings: Settings | None = None,
        providers: dict[str, ProviderConfig] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._providers = dict(providers if providers is not None else PROVIDERS)
        self._flows: dict[str, ProviderFlow] = {}

    def get(self, provider_id: str) -> ProviderConfig:
        config = self._providers.get((provider_id or "").lower())
        if config is None:
            raise UnknownProvider(provider_id)
        return config

    def ids(self) -> list[str]:
        return list(self._providers)

    def all(self) -> list[ProviderConfig]:
        return list(self._providers.values())

    def is_configured(self, provider_id: str) -> bool:
        return self.settings.client_for(self.get(provider_id).id).configured

    def flow(self, provider_id: str) -> ProviderFlow:
        """Return the (cached) flow strategy for provider_id."""
        config = self.get(provider_id)
        flow = self._flows.get(config.id)
        if flow is None:
            flow = flow_for(config, self.settings)
            self._flows[config.id] = flow
        return flow
