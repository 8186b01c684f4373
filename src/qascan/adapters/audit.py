"""Lighthouse audit via the PageSpeed Insights v5 API."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from qascan.adapters.base import CapabilityAdapter
from qascan.schemas.config import PipelineSettings
from qascan.schemas.report import (
    AuditIssue,
    AuditResult,
    CategoryScores,
    DetailedMetrics,
    PerformanceAudit,
    PerformanceOpportunity,
)

logger = logging.getLogger(__name__)

PAGESPEED_ENDPOINT = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
AUDIT_CATEGORIES = ("performance", "accessibility", "best-practices", "seo")

CORE_METRIC_IDS = {
    "first-contentful-paint": "first_contentful_paint",
    "largest-contentful-paint": "largest_contentful_paint",
    "total-blocking-time": "total_blocking_time",
    "cumulative-layout-shift": "cumulative_layout_shift",
    "speed-index": "speed_index",
}

_OPPORTUNITY_GROUPS = {"opportunities", "load-opportunities"}

# PageSpeed category id -> CategoryScores field
_SCORE_FIELDS = {
    "performance": "performance",
    "accessibility": "accessibility",
    "best-practices": "best_practices",
    "seo": "seo",
    "pwa": "pwa",
}


# ---------------------------------------------------------------------------
# Typed view of the PageSpeed response. Unknown keys are ignored.
# ---------------------------------------------------------------------------


class _Wire(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class LighthouseAuditRef(_Wire):
    id: str
    group: str | None = None


class LighthouseCategory(_Wire):
    id: str = ""
    score: float | None = None
    audit_refs: list[LighthouseAuditRef] = []


class LighthouseAudit(_Wire):
    id: str
    title: str = ""
    description: str = ""
    score: float | None = None
    numeric_value: float | None = None
    display_value: str | None = None
    explanation: str | None = None
    details: dict[str, Any] | None = None

    @property
    def savings_ms(self) -> float:
        return float((self.details or {}).get("overallSavingsMs") or 0)

    @property
    def savings_bytes(self) -> float:
        return float((self.details or {}).get("overallSavingsBytes") or 0)


class LighthouseResult(_Wire):
    categories: dict[str, LighthouseCategory] = {}
    audits: dict[str, LighthouseAudit] = {}
    audit_refs: list[LighthouseAuditRef] = []


class PageSpeedResponse(_Wire):
    lighthouse_result: LighthouseResult | None = None


def _score_key(score: float | None) -> float:
    # null scores sort after every real score
    return 2.0 if score is None else score


# ---------------------------------------------------------------------------
# Derivations
# ---------------------------------------------------------------------------


def derive_audit_result(lhr: LighthouseResult, caps: PipelineSettings) -> AuditResult:
    """Turn a Lighthouse result into scores and capped, ordered issue lists."""
    audits = lhr.audits

    scores: dict[str, int] = {}
    for category_id, category in lhr.categories.items():
        field = _SCORE_FIELDS.get(category_id)
        if field and category.score is not None:
            scores[field] = round(category.score * 100)

    def refs_of(category_id: str) -> list[LighthouseAuditRef]:
        category = lhr.categories.get(category_id)
        return category.audit_refs if category else []

    failing_accessibility = [
        a
        for a in (audits.get(ref.id) for ref in refs_of("accessibility"))
        if a is not None and a.score is not None and a.score < 1 and a.details
    ]
    failing_accessibility.sort(key=lambda a: _score_key(a.score))
    accessibility_issues = [
        AuditIssue(id=a.id, title=a.title, description=a.description, score=a.score)
        for a in failing_accessibility[: caps.accessibility_issue_cap]
    ]

    # Opportunities may be listed globally or under the performance category.
    opportunity_refs = lhr.audit_refs or refs_of("performance")
    opportunity_audits = [
        a
        for a in (audits.get(ref.id) for ref in opportunity_refs if ref.group in _OPPORTUNITY_GROUPS)
        if a is not None and a.details and (a.savings_ms > 0 or a.savings_bytes > 0)
    ]
    opportunity_audits.sort(key=lambda a: a.savings_ms, reverse=True)
    performance_opportunities = [
        PerformanceOpportunity(
            id=a.id,
            title=a.title,
            description=a.description,
            overall_savings_ms=a.savings_ms or None,
            overall_savings_bytes=a.savings_bytes or None,
        )
        for a in opportunity_audits[: caps.performance_opportunity_cap]
    ]

    excluded = set(CORE_METRIC_IDS) | {a.id for a in opportunity_audits}
    performance_ids = {ref.id for ref in refs_of("performance")}
    non_perfect = [
        a
        for a in audits.values()
        if a.id in performance_ids
        and a.id not in excluded
        and a.score is not None
        and 0 <= a.score < 1
    ]
    non_perfect.sort(key=lambda a: _score_key(a.score))
    non_perfect_performance_audits = [
        PerformanceAudit(
            id=a.id,
            title=a.title,
            description=a.description,
            score=a.score,
            numeric_value=a.numeric_value,
            display_value=a.display_value,
            explanation=a.explanation,
        )
        for a in non_perfect[: caps.non_perfect_performance_cap]
    ]

    def failing_audits(category_id: str, cap: int) -> list[AuditIssue]:
        found = [
            a
            for a in (audits.get(ref.id) for ref in refs_of(category_id))
            if a is not None and a.score is not None and a.score < 1
        ]
        found.sort(key=lambda a: _score_key(a.score))
        return [
            AuditIssue(id=a.id, title=a.title, description=a.description, score=a.score)
            for a in found[:cap]
        ]

    metrics = {
        field: audits[audit_id].numeric_value
        for audit_id, field in CORE_METRIC_IDS.items()
        if audit_id in audits
    }

    return AuditResult(
        success=True,
        scores=CategoryScores(**scores),
        detailed_metrics=DetailedMetrics(**metrics),
        accessibility_issues=accessibility_issues,
        performance_opportunities=performance_opportunities,
        non_perfect_performance_audits=non_perfect_performance_audits,
        seo_audits=failing_audits("seo", caps.seo_audit_cap),
        best_practices_audits=failing_audits("best-practices", caps.best_practices_audit_cap),
    )


class AuditAdapter(CapabilityAdapter[AuditResult]):
    """Runs one PageSpeed request and derives the report's audit section."""

    def __init__(
        self,
        api_key: str,
        *,
        caps: PipelineSettings | None = None,
        timeout: float = 90.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._caps = caps or PipelineSettings()
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "Lighthouse audit"

    def failure(self, message: str) -> AuditResult:
        return AuditResult(success=False, error=f"Lighthouse audit failed: {message}")

    async def perform(self, url: str, *, report_id: str = "") -> AuditResult:
        if not self._api_key:
            logger.warning("PAGESPEED_API_KEY is not set. Skipping Lighthouse audit for report %s", report_id)
            return AuditResult(
                success=False,
                error="PageSpeed API Key not configured. Lighthouse audit skipped.",
            )

        params: list[tuple[str, str]] = [("url", url), ("key", self._api_key), ("strategy", "DESKTOP")]
        params.extend(("category", c) for c in AUDIT_CATEGORIES)

        logger.info("Starting Lighthouse audit via PageSpeed API for report %s", report_id)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as http:
            resp = await http.get(PAGESPEED_ENDPOINT, params=params)

        if resp.status_code >= 400:
            logger.error(
                "PageSpeed API request failed for report %s: HTTP %d", report_id, resp.status_code,
            )
            return self.failure(
                f"PageSpeed API request failed with status {resp.status_code}: {resp.text[:500]}"
            )

        parsed = PageSpeedResponse.model_validate(resp.json())
        if parsed.lighthouse_result is None or not parsed.lighthouse_result.categories:
            return self.failure("Lighthouse result categories not found in PageSpeed API response.")

        result = derive_audit_result(parsed.lighthouse_result, self._caps)
        logger.info(
            "Lighthouse audit successful for report %s: %d accessibility issue(s), %d opportunity(ies)",
            report_id, len(result.accessibility_issues), len(result.performance_opportunities),
        )
        return result
