"""
scanners/base.py -- Shared request, pagination, and summary logic for scanners.

Each provider scanner subclasses ProviderScanner and maps scan type names to
coroutine methods via SCAN_TYPES. run_scan() dispatches, then builds the
ScanResult summary from whatever categories the handler returned.

HTTP conventions shared by every provider:
  404            -> FeatureNotEnabled -> that sub-resource is reported empty.
                    Accounts differ in which security products are switched
                    on; a missing product must not abort the whole scan.
  other non-2xx  -> ProviderApiError (hard failure of the scan).
  transport error/timeout -> ProviderApiError with status None.

Pagination stops when the provider returns no cursor or after max_pages
pages; a capped category is listed under summary["truncated"].

Layer rule: no imports from api/ or scans/. Scanners receive a Credential;
they never look connections up themselves.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, ClassVar, Optional

import httpx

from core.config import Settings, get_settings
from core.errors import FeatureNotEnabled, ProviderApiError, UnsupportedScanType
from core.models import Credential, ScanResult

logger = logging.getLogger("cloudscan.scanners")

# A page fetcher takes the cursor from the previous page (None for the first
# page) and returns (items, next_cursor).
PageFetcher = Callable[[Optional[str]], Awaitable[tuple[list[dict[str, Any]], Optional[str]]]]


class ProviderScanner:
    """Uniform "run named scan" capability over one provider's REST surface."""

    provider_id: ClassVar[str] = ""
    # scan type name -> name of the coroutine method implementing it
    SCAN_TYPES: ClassVar[dict[str, str]] = {}

    def __init__(
        self,
        credential: Credential,
        http: httpx.AsyncClient,
        settings: Optional[Settings] = None,
    ) -> None:
        self.credential = credential
        self.http = http
        self.settings = settings or get_settings()
        self.max_pages = self.settings.scan_max_pages
        self._truncated: set[str] = set()

    @classmethod
    def supports(cls, scan_type: str) -> bool:
        return scan_type in cls.SCAN_TYPES

    async def run_scan(self, scan_type: str, options: Optional[dict[str, Any]] = None) -> ScanResult:
        method_name = self.SCAN_TYPES.get(scan_type)
        if method_name is None:
            raise UnsupportedScanType(self.provider_id, scan_type)
        self._truncated.clear()
        handler = getattr(self, method_name)
        results, extra = await handler(options or {})
        summary = self.summarize(results)
        summary.update(extra)
        if self._truncated:
            summary["truncated"] = sorted(self._truncated)
        return ScanResult(
            provider_id=self.provider_id,
            scan_type=scan_type,
            timestamp=datetime.now(timezone.utc).isoformat(),
            summary=summary,
            results=results,
        )

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def severity_of(self, category: str, item: dict[str, Any]) -> Optional[str]:
        """Return the severity label of a finding, or None if it has none."""
        return None

    def summarize(self, results: dict[str, list[dict[str, Any]]]) -> dict[str, Any]:
        counts = {category: len(items) for category, items in results.items()}
        severity: dict[str, int] = {}
        for category, items in results.items():
            for item in items:
                label = self.severity_of(category, item)
                if label:
                    label = label.upper()
                    severity[label] = severity.get(label, 0) + 1
        return {"counts": counts, "severity": severity, "total": sum(counts.values())}

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credential.access_token}",
            "Accept": "application/json",
        }

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            resp = await self.http.request(method, url, params=params, json=json, headers=self.headers())
        except httpx.HTTPError as e:
            raise ProviderApiError(self.provider_id, url, None, str(e)) from e
        if resp.status_code == 404:
            raise FeatureNotEnabled(self.provider_id, url)
        if not resp.is_success:
            raise ProviderApiError(self.provider_id, url, resp.status_code, resp.text)
        return resp

    async def get_json(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        resp = await self.request("GET", url, params=params)
        return self._decode(url, resp)

    async def post_json(self, url: str, body: dict[str, Any]) -> Any:
        resp = await self.request("POST", url, json=body)
        return self._decode(url, resp)

    def _decode(self, url: str, resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderApiError(self.provider_id, url, resp.status_code, "response is not JSON") from e

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    async def paginate(self, category: str, fetch_page: PageFetcher) -> list[dict[str, Any]]:
        """Collect every page from fetch_page, up to max_pages.

        A 404 yields whatever was collected so far -- an empty list when the
        first page is missing (feature not enabled for this account).
        """
        items: list[dict[str, Any]] = []
        cursor: Optional[str] = None
        for _ in range(self.max_pages):
            try:
                batch, cursor = await fetch_page(cursor)
            except FeatureNotEnabled as e:
                logger.info("%s: %s not enabled (%s) -- reporting empty", self.provider_id, category, e.url)
                return items
            items.extend(batch)
            if not cursor:
                return items
        logger.warning("%s: %s stopped at the %d-page cap", self.provider_id, category, self.max_pages)
        self._truncated.add(category)
        return items

    async def fetch_optional(self, category: str, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        """GET a single non-paginated resource; None when the feature is not enabled."""
        try:
            return await self.get_json(url, params)
        except FeatureNotEnabled as e:
            logger.info("%s: %s not enabled (%s) -- reporting empty", self.provider_id, category, e.url)
            return None

    async def post_optional(self, category: str, url: str, body: dict[str, Any]) -> Any:
        """POST to a single non-paginated action; None when the feature is not enabled."""
        try:
            return await self.post_json(url, body)
        except FeatureNotEnabled as e:
            logger.info("%s: %s not enabled (%s) -- reporting empty", self.provider_id, category, e.url)
            return None
