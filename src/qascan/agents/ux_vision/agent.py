"""UX vision analysis: critique of one captured screenshot."""

from __future__ import annotations

import base64
import json
import logging

from qascan.adapters.base import CapabilityAdapter
from qascan.agents.base import TextModel, extract_json
from qascan.agents.ux_vision.prompts import SYSTEM_PROMPT, USER_PROMPT
from qascan.schemas.report import SectionStatus, VisionSuggestion, VisionSuggestions
from qascan.shared.ai_provider import AiProviderConfig
from qascan.shared.screenshot_storage import ScreenshotStorage

logger = logging.getLogger(__name__)


class UxVisionAgent(CapabilityAdapter[VisionSuggestions]):
    """Sends one screenshot to the vision model and parses its suggestions.

    A response that is empty, not JSON, or lacks a ``suggestions`` array is
    an error for the whole section; there is no partial parse.
    """

    def __init__(
        self,
        client: TextModel,
        ai: AiProviderConfig,
        storage: ScreenshotStorage,
        *,
        max_suggestions: int = 10,
        timeout: float = 120.0,
    ) -> None:
        self.client = client
        self.ai = ai
        self._storage = storage
        self._max_suggestions = max_suggestions
        self.timeout = timeout

    @property
    def name(self) -> str:
        return "AI UX design analysis"

    def _result(self, **fields) -> VisionSuggestions:
        return VisionSuggestions(model_used=self.ai.model, provider_used=self.ai.provider, **fields)

    def failure(self, message: str) -> VisionSuggestions:
        return self._result(status=SectionStatus.ERROR, error=f"AI analysis failed: {message}")

    async def perform(
        self,
        screenshot_ref: str,
        screen_context: str = "general",
        *,
        report_id: str = "",
    ) -> VisionSuggestions:
        logger.info(
            "Starting AI UX analysis for report %s with %s/%s (%s screenshot)",
            report_id, self.ai.provider, self.ai.model, screen_context,
        )
        image = await self._storage.load(screenshot_ref)
        raw = await self.client.generate_vision(
            self.ai,
            USER_PROMPT,
            base64.b64encode(image).decode(),
            system=SYSTEM_PROMPT,
            temperature=0.4,
            max_tokens=2048,
        )
        logger.debug("UX analysis raw output for report %s:\n%s", report_id, raw[:500])
        return self.parse_output(raw, screen_context)

    def parse_output(self, raw_text: str, screen_context: str = "general") -> VisionSuggestions:
        if not raw_text or not raw_text.strip():
            return self._result(status=SectionStatus.ERROR, error="AI analysis returned an empty response.")

        try:
            data = extract_json(raw_text)
        except (ValueError, json.JSONDecodeError) as exc:
            logger.warning("Failed to parse AI UX response as JSON: %s", exc)
            return self._result(status=SectionStatus.ERROR, error="Failed to parse AI response as JSON.")

        items = data.get("suggestions") if isinstance(data, dict) else None
        if not isinstance(items, list):
            return self._result(
                status=SectionStatus.ERROR,
                error="LLM response JSON does not contain a valid 'suggestions' array.",
            )

        suggestions = []
        for item in items[: self._max_suggestions]:
            if not isinstance(item, dict):
                item = {"suggestion": str(item)} if item else {}
            suggestions.append(VisionSuggestion(
                suggestion=str(item.get("suggestion") or "No suggestion text provided"),
                reasoning=str(item.get("reasoning") or "No reasoning provided"),
                screen_context=screen_context,
            ))
        introduction = data.get("introduction")
        if not isinstance(introduction, str):
            logger.warning(
                "AI UX response has no 'introduction' string (got %s); leaving it empty",
                type(introduction).__name__,
            )
            introduction = ""
        return self._result(
            status=SectionStatus.COMPLETED,
            introduction=introduction,
            suggestions=suggestions,
        )
