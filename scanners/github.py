"""
scanners/github.py -- Repository security alerts for the connected GitHub user.

Scan type:
  code_security -- for the most recently updated repositories (capped at
                   options["max_repositories"] or GITHUB_MAX_REPOSITORIES),
                   open Dependabot, secret scanning, and code scanning alerts.

Each alert endpoint answers 404 when the feature is off for that repository
(Dependabot disabled, no code scanning configured, ...). That is the normal
case for many repositories and yields an empty list. Repositories are
scanned concurrently.

GitHub pages with the Link response header (rel="next"); the next URL
already carries the query string.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from core.errors import FeatureNotEnabled
from scanners.base import ProviderScanner

logger = logging.getLogger("cloudscan.scanners.github")

API_URL = "https://api.github.com"

_ALERT_KINDS = {
    "dependabot_alerts": "dependabot/alerts",
    "secret_scanning_alerts": "secret-scanning/alerts",
    "code_scanning_alerts": "code-scanning/alerts",
}


class GitHubSecurityScanner(ProviderScanner):
    provider_id = "github"
    SCAN_TYPES = {"code_security": "scan_code_security"}

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.credential.access_token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def severity_of(self, category: str, item: dict[str, Any]) -> Optional[str]:
        if category == "dependabot_alerts":
            advisory = item.get("security_advisory") or {}
            vulnerability = item.get("security_vulnerability") or {}
            return advisory.get("severity") or vulnerability.get("severity")
        if category == "code_scanning_alerts":
            rule = item.get("rule") or {}
            return rule.get("security_severity_level") or rule.get("severity")
        return None

    def _link_pages(self, url: str, params: dict[str, Any]):
        async def fetch(cursor: Optional[str]):
            if cursor:
                resp = await self.request("GET", cursor)
            else:
                resp = await self.request("GET", url, params=params)
            data = self._decode(url, resp)
            next_url = resp.links.get("next", {}).get("url")
            return (data if isinstance(data, list) else []), next_url

        return fetch

    async def scan_code_security(self, options: dict[str, Any]):
        limit = int(options.get("max_repositories") or self.settings.github_max_repositories)
        # Only the first `limit` repositories are scanned, so only fetch enough
        # pages to cover them.
        per_page = min(100, max(1, limit))
        repos = await self._fetch_repositories(per_page, limit)

        scans = await asyncio.gather(*(self._scan_repository(repo) for repo in repos))

        results: dict[str, list[dict[str, Any]]] = {"repositories": []}
        for kind in _ALERT_KINDS:
            results[kind] = []
        for repo_summary, alerts in scans:
            results["repositories"].append(repo_summary)
            for kind, items in alerts.items():
                results[kind].extend(items)

        extra = {
            "repositories_scanned": len(repos),
            "total_vulnerabilities": len(results["dependabot_alerts"]),
            "total_secrets": len(results["secret_scanning_alerts"]),
        }
        return results, extra

    async def _fetch_repositories(self, per_page: int, limit: int) -> list[dict[str, Any]]:
        fetch = self._link_pages(f"{API_URL}/user/repos", {"per_page": per_page, "sort": "updated"})
        repos: list[dict[str, Any]] = []
        cursor: Optional[str] = None
        for _ in range(self.max_pages):
            try:
                batch, cursor = await fetch(cursor)
            except FeatureNotEnabled as e:
                logger.info("github: repository listing not available (%s) -- reporting empty", e.url)
                break
            repos.extend(batch)
            if len(repos) >= limit or not cursor:
                break
        return repos[:limit]

    async def _scan_repository(self, repo: dict[str, Any]):
        full_name = repo["full_name"]
        alerts: dict[str, list[dict[str, Any]]] = {}
        for kind, path in _ALERT_KINDS.items():
            items = await self.paginate(
                kind,
                self._link_pages(f"{API_URL}/repos/{full_name}/{path}", {"state": "open", "per_page": 100}),
            )
            alerts[kind] = [{**item, "repository": full_name} for item in items]

        summary = {
            "name": repo.get("name"),
            "full_name": full_name,
            "private": repo.get("private", False),
            "vulnerabilities": len(alerts["dependabot_alerts"]),
            "secrets": len(alerts["secret_scanning_alerts"]),
            "code_scanning": len(alerts["code_scanning_alerts"]),
        }
        return summary, alerts
