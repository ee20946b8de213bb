"""scanners/ -- One security scanner strategy per provider.

scanner_for() is the only constructor the orchestrator uses; adding a
provider means adding a ProviderScanner subclass and listing it here.
"""

from __future__ import annotations

from typing import Optional

import httpx

from core.config import Settings
from core.errors import UnknownProvider
from core.models import Credential
from scanners.aws import AWSSecurityScanner
from scanners.azure import AzureSecurityScanner
from scanners.base import ProviderScanner
from scanners.github import GitHubSecurityScanner
from scanners.google import GoogleCloudSecurityScanner

SCANNERS: dict[str, type[ProviderScanner]] = {
    cls.provider_id: cls
    for cls in (AzureSecurityScanner, AWSSecurityScanner, GoogleCloudSecurityScanner, GitHubSecurityScanner)
}


def scanner_class(provider_id: str) -> type[ProviderScanner]:
    cls = SCANNERS.get(provider_id)
    if cls is None:
        raise UnknownProvider(provider_id)
    return cls


def scanner_for(
    provider_id: str,
    credential: Credential,
    http: httpx.AsyncClient,
    settings: Optional[Settings] = None,
) -> ProviderScanner:
    return scanner_class(provider_id)(credential, http, settings)
