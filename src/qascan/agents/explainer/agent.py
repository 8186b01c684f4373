"""Explanation fan-out: one LLM explanation per audit issue.

Every category goes through the same function: pick the template, fill
it from the issue, call the model. Calls within a batch run concurrently
and are joined settle-all, so the output list always lines up with the
input list item-for-item.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Sequence, Union

from qascan.agents.base import TextModel
from qascan.agents.explainer.prompts import (
    ACCESSIBILITY_PROMPT,
    BEST_PRACTICES_PROMPT,
    PERFORMANCE_PROMPT,
    SEO_PROMPT,
    SYSTEM_PROMPT,
)
from qascan.schemas.report import (
    AuditIssue,
    AuditResult,
    ExplainedIssue,
    ExplainedIssues,
    PerformanceAudit,
    PerformanceOpportunity,
    SectionStatus,
)
from qascan.shared.ai_provider import AiProviderConfig

logger = logging.getLogger(__name__)

Issue = Union[AuditIssue, PerformanceOpportunity, PerformanceAudit]

EMPTY_EXPLANATION = "No explanation provided by AI."


class ExplanationCategory(str, Enum):
    ACCESSIBILITY = "accessibility"
    PERFORMANCE_OPPORTUNITIES = "performance_opportunities"
    PERFORMANCE_NON_PERFECT = "performance_non_perfect"
    SEO = "seo"
    BEST_PRACTICES = "best_practices"


_TEMPLATES = {
    ExplanationCategory.ACCESSIBILITY: ACCESSIBILITY_PROMPT,
    ExplanationCategory.PERFORMANCE_OPPORTUNITIES: PERFORMANCE_PROMPT,
    ExplanationCategory.PERFORMANCE_NON_PERFECT: PERFORMANCE_PROMPT,
    ExplanationCategory.SEO: SEO_PROMPT,
    ExplanationCategory.BEST_PRACTICES: BEST_PRACTICES_PROMPT,
}

# category -> AuditResult list it explains
_AUDIT_SOURCES = {
    ExplanationCategory.ACCESSIBILITY: "accessibility_issues",
    ExplanationCategory.PERFORMANCE_OPPORTUNITIES: "performance_opportunities",
    ExplanationCategory.PERFORMANCE_NON_PERFECT: "non_perfect_performance_audits",
    ExplanationCategory.SEO: "seo_audits",
    ExplanationCategory.BEST_PRACTICES: "best_practices_audits",
}


def format_savings(savings_ms: float | None, savings_bytes: float | None) -> str:
    """Human-readable savings: ``"120ms"``, ``"45.2KiB"`` or ``"some resources"``."""
    if savings_ms and savings_ms > 0:
        return f"{round(savings_ms)}ms"
    if savings_bytes and savings_bytes > 0:
        return f"{savings_bytes / 1024:.1f}KiB"
    return "some resources"


def build_prompt(issue: Issue, category: ExplanationCategory) -> str:
    savings = format_savings(
        getattr(issue, "overall_savings_ms", None),
        getattr(issue, "overall_savings_bytes", None),
    )
    return _TEMPLATES[category].format(
        title=issue.title,
        description=issue.description,
        savings=savings,
    )


def skipped_explanations(reason: str) -> ExplainedIssues:
    return ExplainedIssues(status=SectionStatus.SKIPPED, error=reason)


class IssueExplainer:
    """Explains audit issues with one model call per issue.

    A single semaphore bounds in-flight calls across every category of
    one report.
    """

    def __init__(
        self,
        client: TextModel,
        ai: AiProviderConfig,
        *,
        concurrency: int = 8,
        timeout: float = 60.0,
    ) -> None:
        self.client = client
        self.ai = ai
        self.timeout = timeout
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _explain_one(self, issue: Issue, category: ExplanationCategory) -> ExplainedIssue:
        prompt = build_prompt(issue, category)
        async with self._semaphore:
            text = await asyncio.wait_for(
                self.client.generate_text(
                    self.ai,
                    prompt,
                    system=SYSTEM_PROMPT,
                    temperature=0.4,
                    max_tokens=768,
                ),
                timeout=self.timeout,
            )
        if not text or not text.strip():
            return ExplainedIssue(
                issue_id=issue.id,
                title=issue.title,
                explanation=EMPTY_EXPLANATION,
                status=SectionStatus.COMPLETED,
            )
        return ExplainedIssue(
            issue_id=issue.id,
            title=issue.title,
            explanation=text.strip(),
            status=SectionStatus.COMPLETED,
        )

    async def explain_all(
        self,
        issues: Sequence[Issue],
        category: ExplanationCategory,
        *,
        report_id: str = "",
    ) -> list[ExplainedIssue]:
        """Explain every issue; output index *i* always belongs to input index *i*."""
        if not issues:
            return []

        results = await asyncio.gather(
            *(self._explain_one(issue, category) for issue in issues),
            return_exceptions=True,
        )

        explained: list[ExplainedIssue] = []
        for issue, result in zip(issues, results):
            if isinstance(result, ExplainedIssue):
                explained.append(result)
                continue
            if isinstance(result, asyncio.TimeoutError):
                message = f"timed out after {self.timeout:.0f}s"
            else:
                message = str(result) or type(result).__name__
            logger.error(
                "Explanation failed for %s item %s (report %s): %s",
                category.value, issue.id, report_id, message,
            )
            explained.append(ExplainedIssue(
                issue_id=issue.id,
                title=issue.title,
                status=SectionStatus.ERROR,
                error=message,
            ))
        return explained

    async def explain_audit(self, audit: AuditResult, *, report_id: str = "") -> ExplainedIssues:
        categories = list(ExplanationCategory)
        logger.info(
            "Generating explanations for report %s with %s/%s",
            report_id, self.ai.provider, self.ai.model,
        )
        batches = await asyncio.gather(*(
            self.explain_all(getattr(audit, _AUDIT_SOURCES[c]), c, report_id=report_id)
            for c in categories
        ))
        return ExplainedIssues(
            status=SectionStatus.COMPLETED,
            **{c.value: batch for c, batch in zip(categories, batches)},
        )
