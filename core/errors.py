"""
core/errors.py -- Exception taxonomy for the auth and scan core.

Propagation policy:
  InvalidOrExpiredState / TokenExchangeFailure are raised to whoever called
      AuthFlowController.handle_callback(). Never swallowed.
  UserInfoFetchFailure is raised by the provider flow and caught by the
      controller, which logs it and records it on Credential.identity_error.
  TokenRefreshFailure never reaches a caller that is waiting -- the lifecycle
      manager converts it into a ConnectionExpired event.
  ProviderApiError / FeatureNotEnabled are raised inside scanners; the
      orchestrator records the message on the terminal ScanRecord.

Nothing in this package retries automatically.
"""

from __future__ import annotations

from typing import Optional


class CloudScanError(Exception):
    """Base class for every error raised by the auth and scan core."""


class UnknownProvider(CloudScanError):
    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"Unknown provider: {provider_id!r}")


class InvalidOrExpiredState(CloudScanError):
    """The callback state does not match a live, unconsumed PKCE session."""

    def __init__(self, message: str = "Invalid or expired OAuth state") -> None:
        super().__init__(message)


class TokenExchangeFailure(CloudScanError):
    def __init__(self, provider_id: str, status_code: Optional[int], body: str) -> None:
        self.provider_id = provider_id
        self.status_code = status_code
        self.body = body
        super().__init__(f"Token exchange failed for {provider_id} (status={status_code}): {body[:200]}")


class UserInfoFetchFailure(CloudScanError):
    def __init__(self, provider_id: str, reason: str) -> None:
        self.provider_id = provider_id
        self.reason = reason
        super().__init__(f"User info fetch failed for {provider_id}: {reason}")


class TokenRefreshFailure(CloudScanError):
    def __init__(self, provider_id: str, status_code: Optional[int], body: str) -> None:
        self.provider_id = provider_id
        self.status_code = status_code
        self.body = body
        super().__init__(f"Token refresh failed for {provider_id} (status={status_code}): {body[:200]}")


class NoActiveConnection(CloudScanError):
    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"No active connection for provider: {provider_id}")


class UnsupportedScanType(CloudScanError):
    def __init__(self, provider_id: str, scan_type: str) -> None:
        self.provider_id = provider_id
        self.scan_type = scan_type
        super().__init__(f"Scan type {scan_type!r} is not supported for provider {provider_id}")


class ProviderApiError(CloudScanError):
    """A scan sub-request failed with a non-404 status or a transport error."""

    def __init__(self, provider_id: str, url: str, status_code: Optional[int], body: str = "") -> None:
        self.provider_id = provider_id
        self.url = url
        self.status_code = status_code
        self.body = body
        super().__init__(f"{provider_id} API request to {url} failed (status={status_code}): {body[:200]}")


class FeatureNotEnabled(CloudScanError):
    """HTTP 404 from a scan endpoint: the feature is off for this account.

    Scanners catch this and report an empty result for the sub-resource.
    """

    def __init__(self, provider_id: str, url: str) -> None:
        self.provider_id = provider_id
        self.url = url
        super().__init__(f"{provider_id}: feature not enabled at {url}")
