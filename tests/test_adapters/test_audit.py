"""Tests for the PageSpeed audit adapter and its derivations."""

from __future__ import annotations

import httpx
import pytest

from qascan.adapters.audit import (
    AuditAdapter,
    LighthouseResult,
    PageSpeedResponse,
    derive_audit_result,
)
from qascan.schemas.config import PipelineSettings


def _lhr(body: dict) -> LighthouseResult:
    return PageSpeedResponse.model_validate(body).lighthouse_result


class TestDerivations:
    def test_scores_are_rounded_percentages(self, pagespeed_body) -> None:
        result = derive_audit_result(_lhr(pagespeed_body), PipelineSettings())
        assert result.success
        assert result.scores.performance == 72
        assert result.scores.accessibility == 85
        assert result.scores.best_practices == 90
        assert result.scores.seo == 80
        assert result.scores.pwa is None

    def test_detailed_metrics(self, pagespeed_body) -> None:
        metrics = derive_audit_result(_lhr(pagespeed_body), PipelineSettings()).detailed_metrics
        assert metrics.first_contentful_paint == 1800.5
        assert metrics.largest_contentful_paint == 3200
        assert metrics.total_blocking_time == 150
        assert metrics.cumulative_layout_shift == 0.01
        assert metrics.speed_index == 2500

    def test_accessibility_issues_need_failing_score_and_details(self, pagespeed_body) -> None:
        issues = derive_audit_result(_lhr(pagespeed_body), PipelineSettings()).accessibility_issues
        # passing (button-name), not applicable (aria-hidden-body) and detail-less (html-has-lang) are left out
        assert [i.id for i in issues] == ["color-contrast", "image-alt"]

    def test_accessibility_cap(self, pagespeed_body) -> None:
        issues = derive_audit_result(
            _lhr(pagespeed_body), PipelineSettings(accessibility_issue_cap=1),
        ).accessibility_issues
        assert [i.id for i in issues] == ["color-contrast"]

    def test_accessibility_worst_first_before_cap(self, pagespeed_body) -> None:
        audits = pagespeed_body["lighthouseResult"]["audits"]
        audits["color-contrast"]["score"] = 0.9
        audits["image-alt"]["score"] = 0.5
        audits["html-has-lang"]["details"] = {"type": "table", "items": []}

        issues = derive_audit_result(
            _lhr(pagespeed_body), PipelineSettings(accessibility_issue_cap=2),
        ).accessibility_issues

        # html-has-lang is listed last by the engine but scores 0
        assert [(i.id, i.score) for i in issues] == [("html-has-lang", 0), ("image-alt", 0.5)]

    def test_opportunities_sorted_by_savings(self, pagespeed_body) -> None:
        opps = derive_audit_result(_lhr(pagespeed_body), PipelineSettings()).performance_opportunities
        assert [o.id for o in opps] == ["unused-javascript", "render-blocking-resources"]
        assert opps[0].overall_savings_ms == 900
        assert opps[0].overall_savings_bytes == 120000
        assert opps[1].overall_savings_bytes is None

    def test_opportunity_cap(self, pagespeed_body) -> None:
        opps = derive_audit_result(
            _lhr(pagespeed_body), PipelineSettings(performance_opportunity_cap=1),
        ).performance_opportunities
        assert [o.id for o in opps] == ["unused-javascript"]

    def test_non_perfect_excludes_metrics_and_opportunities(self, pagespeed_body) -> None:
        audits = derive_audit_result(_lhr(pagespeed_body), PipelineSettings()).non_perfect_performance_audits
        assert [a.id for a in audits] == ["mainthread-work-breakdown", "bootup-time"]
        assert audits[1].display_value == "2.1 s"

    def test_seo_and_best_practices_failing_only_worst_first(self, pagespeed_body) -> None:
        result = derive_audit_result(_lhr(pagespeed_body), PipelineSettings())
        assert [a.id for a in result.seo_audits] == ["meta-description", "link-text"]
        assert [a.id for a in result.best_practices_audits] == ["errors-in-console"]

    def test_global_audit_refs_take_precedence(self, pagespeed_body) -> None:
        pagespeed_body["lighthouseResult"]["auditRefs"] = [
            {"id": "render-blocking-resources", "group": "opportunities"},
        ]
        opps = derive_audit_result(_lhr(pagespeed_body), PipelineSettings()).performance_opportunities
        assert [o.id for o in opps] == ["render-blocking-resources"]

    def test_empty_result(self) -> None:
        result = derive_audit_result(LighthouseResult(), PipelineSettings())
        assert result.success
        assert result.accessibility_issues == []
        assert result.performance_opportunities == []


def _transport(handler):
    return httpx.MockTransport(handler)


class TestAuditAdapter:
    @pytest.mark.asyncio
    async def test_success(self, pagespeed_body) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=pagespeed_body)

        adapter = AuditAdapter("ps-key", transport=_transport(handler))
        result = await adapter.run("https://example.com", report_id="r1")

        assert result.success
        assert result.scores.performance == 72
        params = seen[0].url.params
        assert params["url"] == "https://example.com"
        assert params["key"] == "ps-key"
        assert params.get_list("category") == ["performance", "accessibility", "best-practices", "seo"]

    @pytest.mark.asyncio
    async def test_missing_api_key(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = await AuditAdapter("", transport=_transport(handler)).run("https://example.com")
        assert not result.success
        assert result.error == "PageSpeed API Key not configured. Lighthouse audit skipped."

    @pytest.mark.asyncio
    async def test_http_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, text="Quota exceeded")

        result = await AuditAdapter("k", transport=_transport(handler)).run("https://example.com")
        assert not result.success
        assert "status 429" in result.error
        assert "Quota exceeded" in result.error

    @pytest.mark.asyncio
    async def test_missing_categories(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"lighthouseResult": {"audits": {}}})

        result = await AuditAdapter("k", transport=_transport(handler)).run("https://example.com")
        assert not result.success
        assert "categories not found" in result.error

    @pytest.mark.asyncio
    async def test_transport_error_is_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await AuditAdapter("k", transport=_transport(handler)).run("https://example.com")
        assert not result.success
        assert result.error.startswith("Lighthouse audit failed:")
        assert "connection refused" in result.error
