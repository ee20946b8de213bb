"""
scanners/aws.py -- AWS Security Hub and GuardDuty scans over their REST APIs.

Scan types:
  security_hub -- active NEW findings, enabled standards, insights
  guard_duty   -- detectors, their findings, threat intel sets

Security Hub pages with "NextToken" (in the JSON body for POST actions, in
the query string for GET actions); GuardDuty uses "nextToken" the same way.
The region comes from options["region"], falling back to AWS_REGION.

Requests carry the connection's bearer token, as every other scanner does.
Calling the public AWS endpoints directly additionally needs SigV4 signing
with STS session credentials; that signer belongs in a gateway in front of
these URLs and is not part of this module.
"""

from __future__ import annotations

from typing import Any, Optional

from scanners.base import ProviderScanner

_SECURITY_HUB_URL = "https://securityhub.{region}.amazonaws.com"
_GUARDDUTY_URL = "https://guardduty.{region}.amazonaws.com"

_ACTIVE_NEW_FINDINGS = {
    "WorkflowStatus": [{"Value": "NEW", "Comparison": "EQUALS"}],
    "RecordState": [{"Value": "ACTIVE", "Comparison": "EQUALS"}],
}


def guardduty_severity(score: Any) -> Optional[str]:
    """Map a GuardDuty numeric severity (0.0-10.0) onto a label."""
    try:
        value = float(score)
    except (TypeError, ValueError):
        return None
    if value >= 9.0:
        return "CRITICAL"
    if value >= 7.0:
        return "HIGH"
    if value >= 4.0:
        return "MEDIUM"
    return "LOW"


class AWSSecurityScanner(ProviderScanner):
    provider_id = "aws"
    SCAN_TYPES = {
        "security_hub": "scan_security_hub",
        "guard_duty": "scan_guard_duty",
    }

    def severity_of(self, category: str, item: dict[str, Any]) -> Optional[str]:
        if category == "findings" and "Severity" in item:
            return (item.get("Severity") or {}).get("Label")
        if category == "guardduty_findings":
            return guardduty_severity(item.get("severity"))
        return None

    def _region(self, options: dict[str, Any]) -> str:
        return options.get("region") or self.settings.aws_region

    def _post_pages(self, url: str, body: dict[str, Any], items_key: str, token_key: str = "NextToken"):
        async def fetch(cursor: Optional[str]):
            payload = dict(body)
            if cursor:
                payload[token_key] = cursor
            data = await self.post_json(url, payload)
            return data.get(items_key, []), data.get(token_key)

        return fetch

    def _get_pages(self, url: str, params: dict[str, Any], items_key: str, token_key: str = "NextToken"):
        async def fetch(cursor: Optional[str]):
            query = dict(params)
            if cursor:
                query[token_key] = cursor
            data = await self.get_json(url, query)
            return data.get(items_key, []), data.get(token_key)

        return fetch

    async def scan_security_hub(self, options: dict[str, Any]):
        base = _SECURITY_HUB_URL.format(region=self._region(options))
        findings = await self.paginate(
            "findings",
            self._post_pages(f"{base}/findings", {"Filters": _ACTIVE_NEW_FINDINGS, "MaxResults": 100}, "Findings"),
        )
        standards = await self.paginate(
            "standards",
            self._get_pages(f"{base}/standards", {"MaxResults": 100}, "Standards"),
        )
        insights = await self.paginate(
            "insights",
            self._post_pages(f"{base}/insights/get", {"MaxResults": 100}, "Insights"),
        )
        return {"findings": findings, "standards": standards, "insights": insights}, {}

    async def scan_guard_duty(self, options: dict[str, Any]):
        base = _GUARDDUTY_URL.format(region=self._region(options))
        detector_ids = await self.paginate(
            "detectors",
            self._id_pages(f"{base}/detector", "detectorIds"),
        )
        detectors = [{"detectorId": detector_id} for detector_id in detector_ids]

        findings: list[dict[str, Any]] = []
        threat_intel_sets: list[dict[str, Any]] = []
        for detector_id in detector_ids:
            finding_ids = await self.paginate(
                "guardduty_findings",
                self._id_pages(f"{base}/detector/{detector_id}/findings", "findingIds", post=True),
            )
            # GetFindings accepts at most 50 ids per call.
            for start in range(0, len(finding_ids), 50):
                data = await self.post_optional(
                    "guardduty_findings",
                    f"{base}/detector/{detector_id}/findings/get",
                    {"findingIds": finding_ids[start : start + 50]},
                )
                if data is None:
                    break
                findings.extend(data.get("findings", []))
            set_ids = await self.paginate(
                "threat_intel_sets",
                self._id_pages(f"{base}/detector/{detector_id}/threatintelset", "threatIntelSetIds"),
            )
            threat_intel_sets.extend({"detectorId": detector_id, "threatIntelSetId": s} for s in set_ids)

        results = {
            "detectors": detectors,
            "guardduty_findings": findings,
            "threat_intel_sets": threat_intel_sets,
        }
        return results, {"active_detectors": len(detectors)}

    def _id_pages(self, url: str, items_key: str, post: bool = False):
        """GuardDuty list actions return bare id strings under items_key."""
        if post:
            return self._post_pages(url, {"maxResults": 50}, items_key, token_key="nextToken")
        return self._get_pages(url, {"maxResults": 50}, items_key, token_key="nextToken")
