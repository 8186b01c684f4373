"""Report summary: the last pipeline step, over whatever has settled."""

from __future__ import annotations

import json
import logging
from typing import Any

from qascan.adapters.base import CapabilityAdapter
from qascan.agents.base import TextModel
from qascan.agents.summary.prompts import SYSTEM_PROMPT, USER_PROMPT
from qascan.schemas.report import ReportRecord, ReportSummary, SectionStatus
from qascan.shared.ai_provider import AiProviderConfig

logger = logging.getLogger(__name__)


def _issue_digest(items: list[Any], limit: int, *, failing_only: bool = False) -> list[dict[str, Any]]:
    if failing_only:
        items = [i for i in items if i.score is not None and i.score < 1]
    return [
        {"title": i.title, "description": i.description, "score": i.score}
        for i in items[:limit]
    ]


def condense_report(record: ReportRecord) -> dict[str, Any]:
    """Reduce a record to the facts the summary prompt needs.

    Tolerates every section being absent or failed.
    """
    capture = record.capture_result
    audit = record.audit_result
    tech = record.tech_result
    vision = record.vision_suggestions

    data: dict[str, Any] = {
        "url": record.url,
        "capture": {
            "page_title": capture.page_title if capture else None,
            "screenshots_available": [k for k, v in capture.screenshot_urls.items() if v] if capture else [],
            "error": capture.error if capture else None,
        },
        "audit": None,
        "tech_stack": None,
        "ux_suggestions": None,
    }

    if audit is not None:
        data["audit"] = {
            "overall_scores": audit.scores.model_dump(exclude_none=True) if audit.success else None,
            "accessibility_issues": _issue_digest(audit.accessibility_issues, 3),
            "performance_opportunities": [
                {
                    "title": o.title,
                    "potential_savings_ms": o.overall_savings_ms,
                    "description": o.description,
                }
                for o in audit.performance_opportunities[:2]
            ],
            "seo_issues": _issue_digest(audit.seo_audits, 2, failing_only=True),
            "best_practices_issues": _issue_digest(audit.best_practices_audits, 2, failing_only=True),
            "error": audit.error,
        }

    if tech is not None:
        data["tech_stack"] = {
            "status": tech.status.value,
            "technologies": [t.name for t in tech.technologies],
            "error": tech.error,
        }

    if vision is not None:
        data["ux_suggestions"] = {
            "status": vision.status.value,
            "suggestions": [s.suggestion for s in vision.suggestions[:5]],
            "error": vision.error,
        }

    return data


class SummaryAgent(CapabilityAdapter[ReportSummary]):
    """Asks the text model for a client-ready summary of the record."""

    def __init__(self, client: TextModel, ai: AiProviderConfig, *, timeout: float = 90.0) -> None:
        self.client = client
        self.ai = ai
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "Report summary"

    def _result(self, **fields) -> ReportSummary:
        return ReportSummary(model_used=self.ai.model, provider_used=self.ai.provider, **fields)

    def failure(self, message: str) -> ReportSummary:
        return self._result(status=SectionStatus.ERROR, error=f"LLM summary generation failed: {message}")

    async def perform(self, record: ReportRecord, *, report_id: str = "") -> ReportSummary:
        logger.info(
            "Starting report summary for %s with %s/%s", report_id, self.ai.provider, self.ai.model,
        )
        prompt = USER_PROMPT.format(
            url=record.url,
            report_json=json.dumps(condense_report(record), indent=2, default=str),
        )
        text = await self.client.generate_text(
            self.ai,
            prompt,
            system=SYSTEM_PROMPT,
            temperature=0.5,
            max_tokens=1024,
        )
        if not text or not text.strip():
            logger.warning("Report summary returned empty content for %s", report_id)
            return self._result(status=SectionStatus.ERROR, error="AI summary generation returned empty content.")

        logger.info("Report summary generated for %s", report_id)
        return self._result(status=SectionStatus.COMPLETED, text=text.strip())
