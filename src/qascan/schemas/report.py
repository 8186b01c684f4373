"""Report record: the single document tracking one scan."""

from __future__ import annotations

import random
import string
import time
from enum import Enum

from pydantic import BaseModel, Field


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_report_id() -> str:
    """Return a new opaque report id, e.g. ``analysis_1718000000000_k3j9x0a1b``."""
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(random.choices(alphabet, k=9))
    return f"analysis_{now_ms()}_{suffix}"


class ReportStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ReportStatus.COMPLETED, ReportStatus.FAILED)

    def can_transition_to(self, target: "ReportStatus") -> bool:
        """Forward-only: pending → processing → {completed | failed}.

        Re-asserting the current non-terminal state is allowed so a
        redelivered task can move a ``processing`` record to ``processing``.
        """
        if self.is_terminal:
            return False
        if target == self:
            return True
        return _STATUS_RANK[target] > _STATUS_RANK[self]


_STATUS_RANK = {
    ReportStatus.PENDING: 0,
    ReportStatus.PROCESSING: 1,
    ReportStatus.COMPLETED: 2,
    ReportStatus.FAILED: 2,
}


class SectionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"
    SKIPPED = "skipped"


VIEWPORT_PREFERENCE = ("desktop", "tablet", "mobile")


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


class CaptureResult(BaseModel):
    success: bool
    page_title: str | None = None
    # viewport name -> image reference; viewports that failed are absent
    screenshot_urls: dict[str, str] = {}
    error: str | None = None

    def preferred_screenshot(self) -> tuple[str, str] | None:
        """Pick the image for visual analysis: desktop > tablet > mobile > first available."""
        for viewport in VIEWPORT_PREFERENCE:
            if self.screenshot_urls.get(viewport):
                return viewport, self.screenshot_urls[viewport]
        for viewport, ref in self.screenshot_urls.items():
            if ref:
                return viewport, ref
        return None


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class CategoryScores(BaseModel):
    """Category scores on a 0–100 scale."""

    performance: int | None = None
    accessibility: int | None = None
    best_practices: int | None = None
    seo: int | None = None
    pwa: int | None = None


class DetailedMetrics(BaseModel):
    first_contentful_paint: float | None = None  # ms
    largest_contentful_paint: float | None = None  # ms
    total_blocking_time: float | None = None  # ms
    cumulative_layout_shift: float | None = None
    speed_index: float | None = None  # ms


class AuditIssue(BaseModel):
    """A failing or noteworthy audit item (accessibility, SEO, best practices)."""

    id: str
    title: str = ""
    description: str = ""
    score: float | None = None


class PerformanceOpportunity(BaseModel):
    id: str
    title: str = ""
    description: str = ""
    overall_savings_ms: float | None = None
    overall_savings_bytes: float | None = None


class PerformanceAudit(BaseModel):
    """A performance audit scoring below 1 that is not a core metric or opportunity."""

    id: str
    title: str = ""
    description: str = ""
    score: float | None = None
    numeric_value: float | None = None
    display_value: str | None = None
    explanation: str | None = None


class AuditResult(BaseModel):
    success: bool
    error: str | None = None
    scores: CategoryScores = CategoryScores()
    detailed_metrics: DetailedMetrics = DetailedMetrics()
    accessibility_issues: list[AuditIssue] = []
    performance_opportunities: list[PerformanceOpportunity] = []
    non_perfect_performance_audits: list[PerformanceAudit] = []
    seo_audits: list[AuditIssue] = []
    best_practices_audits: list[AuditIssue] = []


# ---------------------------------------------------------------------------
# Tech detection
# ---------------------------------------------------------------------------


class TechCategory(BaseModel):
    id: int | None = None
    name: str = ""
    slug: str = ""


class DetectedTechnology(BaseModel):
    name: str
    slug: str = ""
    version: str | None = None
    confidence: int = 100
    categories: list[TechCategory] = []
    icon: str | None = None
    website: str | None = None


class TechResult(BaseModel):
    status: SectionStatus
    technologies: list[DetectedTechnology] = []
    error: str | None = None


# ---------------------------------------------------------------------------
# LLM sections
# ---------------------------------------------------------------------------


class VisionSuggestion(BaseModel):
    suggestion: str
    reasoning: str
    screen_context: str = "general"  # desktop | tablet | mobile | general


class VisionSuggestions(BaseModel):
    status: SectionStatus
    introduction: str = ""
    suggestions: list[VisionSuggestion] = []
    error: str | None = None
    model_used: str | None = None
    provider_used: str | None = None


class ExplainedIssue(BaseModel):
    issue_id: str
    title: str = ""
    explanation: str | None = None
    status: SectionStatus
    error: str | None = None


class ExplainedIssues(BaseModel):
    """Per-category explanations, index-aligned with the audit issue lists."""

    status: SectionStatus = SectionStatus.COMPLETED
    error: str | None = None
    accessibility: list[ExplainedIssue] = []
    performance_opportunities: list[ExplainedIssue] = []
    performance_non_perfect: list[ExplainedIssue] = []
    seo: list[ExplainedIssue] = []
    best_practices: list[ExplainedIssue] = []


class ReportSummary(BaseModel):
    status: SectionStatus
    text: str | None = None
    error: str | None = None
    model_used: str | None = None
    provider_used: str | None = None


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------


class RequestedAiConfig(BaseModel):
    provider: str | None = None
    model: str | None = None


SECTION_FIELDS = (
    "capture_result",
    "audit_result",
    "tech_result",
    "vision_suggestions",
    "explained_issues",
    "summary",
)


class ReportRecord(BaseModel):
    """One scan's inputs, progress and results."""

    id: str = Field(default_factory=generate_report_id)
    url: str
    status: ReportStatus = ReportStatus.PENDING
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    ai_config: RequestedAiConfig | None = None

    capture_result: CaptureResult | None = None
    audit_result: AuditResult | None = None
    tech_result: TechResult | None = None
    vision_suggestions: VisionSuggestions | None = None
    explained_issues: ExplainedIssues | None = None
    summary: ReportSummary | None = None

    error_message: str | None = None
