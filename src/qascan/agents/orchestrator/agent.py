"""Scan orchestrator: runs one scan end to end and settles its status."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from qascan.adapters.audit import AuditAdapter
from qascan.adapters.capture import CaptureAdapter
from qascan.adapters.tech_detection import TechDetectionAdapter
from qascan.agents.base import TextModel
from qascan.agents.explainer.agent import IssueExplainer, skipped_explanations
from qascan.agents.summary.agent import SummaryAgent
from qascan.agents.ux_vision.agent import UxVisionAgent
from qascan.schemas.config import RuntimeConfig
from qascan.schemas.report import (
    AuditResult,
    CaptureResult,
    ExplainedIssues,
    ReportStatus,
    ReportSummary,
    SectionStatus,
    TechResult,
    VisionSuggestions,
)
from qascan.schemas.task import ScanTaskPayload
from qascan.shared.ai_provider import AiProviderConfig, resolve_ai_provider
from qascan.shared.errors import ReportNotFoundError
from qascan.shared.report_store import ReportStore
from qascan.shared.screenshot_storage import ScreenshotStorage

logger = logging.getLogger(__name__)

# (step, state, detail); state is one of start | finish | fail | skip
EventCallback = Callable[[str, str, str], None]

STEP_CAPTURE = "Screenshot capture"
STEP_AUDIT = "Lighthouse audit"
STEP_TECH = "Tech detection"
STEP_VISION = "UX vision analysis"
STEP_EXPLANATIONS = "Issue explanations"
STEP_SUMMARY = "Report summary"


class ScanOrchestrator:
    """Coordinates one scan against the report store.

    Pipeline flow:
        processing → capture → (audit | tech | vision) in parallel
        → explanations (if audit succeeded) → summary → completed | failed

    Every section is persisted as soon as it is known. Which sections
    decide the terminal status comes from ``pipeline.required_sections``;
    the rest only degrade their own section. ``run`` never raises.
    """

    def __init__(
        self,
        store: ReportStore,
        config: RuntimeConfig,
        client: TextModel,
        *,
        storage: ScreenshotStorage | None = None,
        capture: CaptureAdapter | None = None,
        audit: AuditAdapter | None = None,
        tech: TechDetectionAdapter | None = None,
        on_event: EventCallback | None = None,
    ) -> None:
        self.store = store
        self.config = config
        self.client = client
        self.storage = storage or ScreenshotStorage(config.storage.data_dir)
        timeouts = config.timeouts
        self.capture = capture or CaptureAdapter(
            self.storage,
            timeout=timeouts.capture,
            navigation_timeout=timeouts.capture_navigation,
        )
        self.audit = audit or AuditAdapter(
            config.secrets.pagespeed_api_key, caps=config.pipeline, timeout=timeouts.audit,
        )
        self.tech = tech or TechDetectionAdapter(
            config.secrets.whatcms_api_key, timeout=timeouts.tech_detection,
        )
        self._on_event = on_event

    def _emit(self, step: str, state: str, detail: str = "") -> None:
        if self._on_event is not None:
            self._on_event(step, state, detail)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, payload: ScanTaskPayload) -> ReportStatus:
        """Run the pipeline for ``payload`` and return the terminal status."""
        report_id = payload.report_id
        try:
            return await self._run_pipeline(payload)
        except Exception as exc:
            logger.exception("Critical error in scan pipeline for report %s", report_id)
            self._emit("Pipeline", "fail", str(exc))
            try:
                await self.store.transition(
                    report_id, ReportStatus.FAILED, error_message=f"Critical task failure: {exc}",
                )
            except Exception:
                logger.exception("Failed to mark report %s as failed after critical error", report_id)
            return ReportStatus.FAILED

    async def _run_pipeline(self, payload: ScanTaskPayload) -> ReportStatus:
        report_id = payload.report_id
        url = payload.url_to_scan
        logger.info("Scan started for report %s: %s", report_id, url)

        await self.store.transition(report_id, ReportStatus.PROCESSING)

        resolution = resolve_ai_provider(payload.ai_provider, payload.ai_model, self.config)
        ai = resolution.config
        skip_reason = resolution.error or "AI provider not configured."
        if ai is None:
            logger.warning("AI steps will be skipped for report %s: %s", report_id, skip_reason)
        else:
            logger.info("Using AI provider %s with model %s for report %s", ai.provider, ai.model, report_id)

        # ── Capture ─────────────────────────────────────────────
        self._emit(STEP_CAPTURE, "start")
        capture = await self.capture.run(url, report_id=report_id)
        await self.store.update_sections(report_id, capture_result=capture)
        self._emit(STEP_CAPTURE, "finish" if capture.success else "fail", capture.error or "")

        # ── Audit, tech detection and vision in parallel ────────
        results = await asyncio.gather(
            self._run_audit(report_id, url),
            self._run_tech(report_id, url),
            self._run_vision(report_id, capture, ai, skip_reason),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        audit, tech, vision = results

        # ── Explanations (only when there are audit findings) ───
        explained: ExplainedIssues | None = None
        if audit.success:
            explained = await self._run_explanations(report_id, audit, ai, skip_reason)
        else:
            logger.warning("Skipping explanations for report %s: audit did not succeed", report_id)

        # ── Summary over everything that settled ────────────────
        summary = await self._run_summary(report_id, ai, skip_reason)

        outcomes = {
            "capture": capture.success,
            "audit": audit.success,
            "tech": tech.status == SectionStatus.COMPLETED,
            "vision": vision.status == SectionStatus.COMPLETED,
            "explanations": explained is not None and explained.status == SectionStatus.COMPLETED,
            "summary": summary.status == SectionStatus.COMPLETED,
        }
        failed = [s for s in self.config.pipeline.required_sections if not outcomes[s]]

        if failed:
            message = "Required scan step(s) failed: " + ", ".join(failed)
            logger.warning("Scan finished for report %s with failures: %s", report_id, message)
            await self.store.transition(report_id, ReportStatus.FAILED, error_message=message)
            self._emit("Pipeline", "fail", message)
            return ReportStatus.FAILED

        await self.store.transition(report_id, ReportStatus.COMPLETED)
        logger.info("Scan completed for report %s", report_id)
        self._emit("Pipeline", "finish")
        return ReportStatus.COMPLETED

    # ------------------------------------------------------------------
    # Parallel branches; each persists its own section
    # ------------------------------------------------------------------

    async def _run_audit(self, report_id: str, url: str) -> AuditResult:
        self._emit(STEP_AUDIT, "start")
        result = await self.audit.run(url, report_id=report_id)
        await self.store.update_sections(report_id, audit_result=result)
        self._emit(STEP_AUDIT, "finish" if result.success else "fail", result.error or "")
        return result

    async def _run_tech(self, report_id: str, url: str) -> TechResult:
        self._emit(STEP_TECH, "start")
        result = await self.tech.run(url, report_id=report_id)
        await self.store.update_sections(report_id, tech_result=result)
        self._emit(STEP_TECH, _event_state(result.status), result.error or "")
        return result

    async def _run_vision(
        self,
        report_id: str,
        capture: CaptureResult,
        ai: AiProviderConfig | None,
        skip_reason: str,
    ) -> VisionSuggestions:
        preferred = capture.preferred_screenshot()
        if preferred is None:
            logger.info("Skipping UX vision analysis for report %s: no screenshot available", report_id)
            result = VisionSuggestions(
                status=SectionStatus.SKIPPED,
                error="Skipped: no screenshot available for analysis.",
            )
        elif ai is None:
            result = VisionSuggestions(status=SectionStatus.SKIPPED, error=skip_reason)
        else:
            self._emit(STEP_VISION, "start")
            viewport, ref = preferred
            agent = UxVisionAgent(
                self.client,
                ai,
                self.storage,
                max_suggestions=self.config.pipeline.vision_suggestion_cap,
                timeout=self.config.timeouts.vision,
            )
            result = await agent.run(ref, viewport, report_id=report_id)

        await self.store.update_sections(report_id, vision_suggestions=result)
        self._emit(STEP_VISION, _event_state(result.status), result.error or "")
        return result

    # ------------------------------------------------------------------
    # Sequential tail
    # ------------------------------------------------------------------

    async def _run_explanations(
        self,
        report_id: str,
        audit: AuditResult,
        ai: AiProviderConfig | None,
        skip_reason: str,
    ) -> ExplainedIssues:
        if ai is None:
            explained = skipped_explanations(skip_reason)
        else:
            self._emit(STEP_EXPLANATIONS, "start")
            explainer = IssueExplainer(
                self.client,
                ai,
                concurrency=self.config.pipeline.explanation_concurrency,
                timeout=self.config.timeouts.llm_text,
            )
            explained = await explainer.explain_audit(audit, report_id=report_id)

        await self.store.update_sections(report_id, explained_issues=explained)
        self._emit(STEP_EXPLANATIONS, _event_state(explained.status), explained.error or "")
        return explained

    async def _run_summary(
        self,
        report_id: str,
        ai: AiProviderConfig | None,
        skip_reason: str,
    ) -> ReportSummary:
        if ai is None:
            summary = ReportSummary(status=SectionStatus.SKIPPED, error=skip_reason)
        else:
            self._emit(STEP_SUMMARY, "start")
            record = await self.store.get(report_id)
            if record is None:
                raise ReportNotFoundError(report_id)
            agent = SummaryAgent(self.client, ai, timeout=self.config.timeouts.summary)
            summary = await agent.run(record, report_id=report_id)

        await self.store.update_sections(report_id, summary=summary)
        self._emit(STEP_SUMMARY, _event_state(summary.status), summary.error or "")
        return summary


def _event_state(status: SectionStatus) -> str:
    if status == SectionStatus.COMPLETED:
        return "finish"
    if status == SectionStatus.SKIPPED:
        return "skip"
    return "fail"


def build_orchestrator(
    config: RuntimeConfig,
    store: ReportStore,
    *,
    dry_run: bool = False,
    on_event: EventCallback | None = None,
) -> ScanOrchestrator:
    """Orchestrator with the real adapters; ``dry_run`` stubs only the LLM calls."""
    if dry_run:
        from qascan.shared.llm_client import DryRunClient
        client = DryRunClient()
    else:
        from qascan.shared.llm_client import LLMClient
        client = LLMClient()

    return ScanOrchestrator(store, config, client, on_event=on_event)
