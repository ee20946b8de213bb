"""
scanners/azure.py -- Microsoft Graph security and Azure Resource Manager scans.

Scan types:
  security_center     -- alerts, incidents, secure score control profiles,
                         latest secure score
  identity_protection -- risky users, risk detections, risky sign-ins
  infrastructure      -- subscriptions and (optionally filtered) resources

Graph pages via "@odata.nextLink"; ARM pages via "nextLink". Both are
absolute URLs with the query already embedded, so follow-up requests send
no params.
"""

from __future__ import annotations

from typing import Any, Optional

from scanners.base import ProviderScanner

GRAPH_URL = "https://graph.microsoft.com/v1.0"
ARM_URL = "https://management.azure.com"
_ARM_SUBSCRIPTIONS_API = "2022-12-01"
_ARM_RESOURCES_API = "2021-04-01"


class AzureSecurityScanner(ProviderScanner):
    provider_id = "azure"
    SCAN_TYPES = {
        "security_center": "scan_security_center",
        "identity_protection": "scan_identity_protection",
        "infrastructure": "scan_infrastructure",
    }

    _SEVERITY_FIELDS = {
        "alerts": "severity",
        "incidents": "severity",
        "risky_users": "riskLevel",
        "risk_detections": "riskLevel",
        "risky_sign_ins": "riskLevelDuringSignIn",
    }

    def severity_of(self, category: str, item: dict[str, Any]) -> Optional[str]:
        field = self._SEVERITY_FIELDS.get(category)
        value = item.get(field) if field else None
        if not value or value in ("none", "unknownFutureValue"):
            return None
        return value

    def _graph_pages(self, path: str, params: Optional[dict[str, Any]] = None, next_key: str = "@odata.nextLink"):
        first_url = path if path.startswith("https://") else f"{GRAPH_URL}{path}"

        async def fetch(cursor: Optional[str]):
            if cursor:
                data = await self.get_json(cursor)
            else:
                data = await self.get_json(first_url, params)
            return data.get("value", []), data.get(next_key)

        return fetch

    async def scan_security_center(self, options: dict[str, Any]):
        top = {"$top": 100}
        results = {
            "alerts": await self.paginate("alerts", self._graph_pages("/security/alerts_v2", top)),
            "incidents": await self.paginate("incidents", self._graph_pages("/security/incidents", top)),
            "recommendations": await self.paginate(
                "recommendations", self._graph_pages("/security/secureScoreControlProfiles", top)
            ),
        }
        scores = await self.fetch_optional(
            "secure_scores", f"{GRAPH_URL}/security/secureScores", {"$top": 1}
        )
        latest = (scores or {}).get("value") or []
        results["secure_scores"] = latest
        extra = {
            "current_secure_score": latest[0].get("currentScore", 0) if latest else 0,
            "max_secure_score": latest[0].get("maxScore", 0) if latest else 0,
        }
        return results, extra

    async def scan_identity_protection(self, options: dict[str, Any]):
        results = {
            "risky_users": await self.paginate(
                "risky_users", self._graph_pages("/identityProtection/riskyUsers", {"$top": 100})
            ),
            "risk_detections": await self.paginate(
                "risk_detections", self._graph_pages("/identityProtection/riskDetections", {"$top": 100})
            ),
            "risky_sign_ins": await self.paginate(
                "risky_sign_ins",
                self._graph_pages(
                    "/auditLogs/signIns",
                    {"$top": 100, "$filter": "riskState eq 'atRisk'"},
                ),
            ),
        }
        return results, {}

    async def scan_infrastructure(self, options: dict[str, Any]):
        subscriptions = await self.paginate(
            "subscriptions",
            self._graph_pages(
                f"{ARM_URL}/subscriptions",
                {"api-version": _ARM_SUBSCRIPTIONS_API},
                next_key="nextLink",
            ),
        )
        wanted = options.get("subscription_id")
        targets = [s for s in subscriptions if not wanted or s.get("subscriptionId") == wanted]

        resources: list[dict[str, Any]] = []
        for sub in targets:
            sub_id = sub.get("subscriptionId")
            if not sub_id:
                continue
            resources.extend(
                await self.paginate(
                    "resources",
                    self._graph_pages(
                        f"{ARM_URL}/subscriptions/{sub_id}/resources",
                        {"api-version": _ARM_RESOURCES_API},
                        next_key="nextLink",
                    ),
                )
            )
        return {"subscriptions": subscriptions, "resources": resources}, {}
