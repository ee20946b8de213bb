"""
scanners/google.py -- Security Command Center and Workspace audit scans.

Scan types:
  security_center -- active findings across all sources, and assets, for an
                     organization (options["organization_id"] or
                     GOOGLE_ORGANIZATION_ID)
  workspace_audit -- Admin SDK Reports activity for the admin, login and
                     drive applications

Both APIs page with "pageToken" in the query and "nextPageToken" in the
response.
"""

from __future__ import annotations

from typing import Any, Optional

from scanners.base import ProviderScanner

SCC_URL = "https://securitycenter.googleapis.com/v1"
REPORTS_URL = "https://admin.googleapis.com/admin/reports/v1/activity/users/all/applications"

_AUDIT_APPLICATIONS = ("admin", "login", "drive")


class GoogleCloudSecurityScanner(ProviderScanner):
    provider_id = "google"
    SCAN_TYPES = {
        "security_center": "scan_security_center",
        "workspace_audit": "scan_workspace_audit",
    }

    def severity_of(self, category: str, item: dict[str, Any]) -> Optional[str]:
        if category == "findings":
            severity = item.get("severity")
            return None if severity in (None, "SEVERITY_UNSPECIFIED") else severity
        return None

    def _pages(self, url: str, params: dict[str, Any], items_key: str, unwrap: Optional[str] = None):
        async def fetch(cursor: Optional[str]):
            query = dict(params)
            if cursor:
                query["pageToken"] = cursor
            data = await self.get_json(url, query)
            items = data.get(items_key, [])
            if unwrap:
                items = [entry.get(unwrap, entry) for entry in items]
            return items, data.get("nextPageToken")

        return fetch

    async def scan_security_center(self, options: dict[str, Any]):
        org_id = options.get("organization_id") or self.settings.google_organization_id
        if not org_id:
            raise ValueError("google security_center scan requires organization_id (option or GOOGLE_ORGANIZATION_ID)")
        org = f"{SCC_URL}/organizations/{org_id}"
        findings = await self.paginate(
            "findings",
            self._pages(
                f"{org}/sources/-/findings",
                {"pageSize": 100, "filter": 'state="ACTIVE"'},
                "listFindingsResults",
                unwrap="finding",
            ),
        )
        assets = await self.paginate(
            "assets",
            self._pages(f"{org}/assets", {"pageSize": 100}, "listAssetsResults", unwrap="asset"),
        )
        return {"findings": findings, "assets": assets}, {"organization_id": org_id}

    async def scan_workspace_audit(self, options: dict[str, Any]):
        params: dict[str, Any] = {"maxResults": 1000}
        customer_id = options.get("customer_id") or self.credential.tenant_id
        if customer_id:
            params["customerId"] = customer_id
        if options.get("start_time"):
            params["startTime"] = options["start_time"]

        results: dict[str, list[dict[str, Any]]] = {}
        for application in _AUDIT_APPLICATIONS:
            category = f"{application}_audit_events"
            results[category] = await self.paginate(
                category,
                self._pages(f"{REPORTS_URL}/{application}", params, "items"),
            )
        return results, {}
