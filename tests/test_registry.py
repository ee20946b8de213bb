"""Unit tests for auth/registry.py -- provider catalog and lookup."""

import pytest

from auth.flows import AwsFlow, AzureFlow, GitHubFlow, GoogleFlow
from auth.registry import PROVIDERS, ProviderRegistry
from core.errors import UnknownProvider
from scanners import SCANNERS
from stubs import make_settings


class TestLookup:
    def test_known_ids(self, registry):
        assert set(registry.ids()) == {"azure", "aws", "google", "github"}

    def test_lookup_is_case_insensitive(self, registry):
        assert registry.get("GitHub").id == "github"

    def test_unknown_provider_raises(self, registry):
        with pytest.raises(UnknownProvider):
            registry.get("dropbox")

    def test_empty_id_raises(self, registry):
        with pytest.raises(UnknownProvider):
            registry.get("")

    @pytest.mark.parametrize(
        "provider_id, flow_cls",
        [("azure", AzureFlow), ("aws", AwsFlow), ("google", GoogleFlow), ("github", GitHubFlow)],
    )
    def test_flow_strategy_per_provider(self, registry, provider_id, flow_cls):
        flow = registry.flow(provider_id)
        assert type(flow) is flow_cls
        assert registry.flow(provider_id) is flow

    def test_is_configured_follows_settings(self):
        registry = ProviderRegistry(make_settings(aws_client_id="", aws_client_secret=""))
        assert registry.is_configured("github") is True
        assert registry.is_configured("aws") is False


class TestCatalog:
    def test_default_scopes_are_deduplicated(self):
        scopes = PROVIDERS["github"].default_scopes()
        assert scopes == ["repo", "security_events", "read:org", "read:user", "user:email"]

    def test_azure_is_tenant_routed(self):
        azure = PROVIDERS["azure"]
        assert azure.tenant_routed is True
        assert azure.default_tenant == "common"
        assert azure.supports_nonce is True

    def test_oidc_providers_use_nonce(self):
        assert {p.id for p in PROVIDERS.values() if p.supports_nonce} == {"azure", "google"}

    @pytest.mark.parametrize("provider_id", sorted(PROVIDERS))
    def test_scan_types_match_scanner(self, provider_id):
        assert set(PROVIDERS[provider_id].scan_types) == set(SCANNERS[provider_id].SCAN_TYPES)
