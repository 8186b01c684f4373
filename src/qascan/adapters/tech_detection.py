"""Technology fingerprinting via the WhatCMS Tech API."""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from qascan.adapters.base import CapabilityAdapter
from qascan.schemas.report import DetectedTechnology, SectionStatus, TechCategory, TechResult

logger = logging.getLogger(__name__)

WHATCMS_ENDPOINT = "https://whatcms.org/API/Tech"

# WhatCMS reports its own outcome in the body's ``result.code``.
CODE_SUCCESS = 200
CODE_NOT_DETECTED = 201


def _slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


def _parse_technology(item: dict[str, Any]) -> DetectedTechnology:
    name = str(item.get("name") or "Unknown")
    categories = [
        TechCategory(name=str(c), slug=_slugify(str(c)))
        for c in item.get("categories") or []
        if c
    ]
    version = item.get("version")
    return DetectedTechnology(
        name=name,
        slug=_slugify(name) or "unknown",
        version=str(version) if version else None,
        categories=categories,
        website=item.get("url") or None,
    )


class TechDetectionAdapter(CapabilityAdapter[TechResult]):
    """One bounded HTTP lookup. "Not detected" is an empty success."""

    def __init__(
        self,
        api_key: str,
        *,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "Tech detection"

    def failure(self, message: str) -> TechResult:
        return TechResult(status=SectionStatus.ERROR, error=f"Tech Stack scan failed: {message}")

    async def perform(self, url: str, *, report_id: str = "") -> TechResult:
        if not self._api_key:
            logger.info("WHATCMS_API_KEY is not set. Skipping tech detection for report %s", report_id)
            return TechResult(
                status=SectionStatus.SKIPPED,
                error="Tech detection API key not configured.",
            )

        logger.info("Starting tech detection for report %s: %s", report_id, url)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as http:
            resp = await http.get(WHATCMS_ENDPOINT, params={"key": self._api_key, "url": url})

        if resp.status_code < 200 or resp.status_code >= 300:
            return self.failure(f"HTTP {resp.status_code}")

        body = resp.json()
        result = body.get("result") if isinstance(body, dict) else None
        if not isinstance(result, dict) or "code" not in result:
            return self.failure("malformed response (missing result.code)")

        code = result.get("code")
        if code == CODE_NOT_DETECTED:
            logger.info("No technologies detected for report %s", report_id)
            return TechResult(status=SectionStatus.COMPLETED, technologies=[])
        if code != CODE_SUCCESS:
            return self.failure(f"{result.get('msg') or 'unexpected response'} (code {code})")

        items = body.get("results") or []
        if not isinstance(items, list):
            return self.failure("malformed response (results is not a list)")

        technologies = [_parse_technology(item) for item in items if isinstance(item, dict)]
        logger.info("Tech detection completed for report %s: %d technologies", report_id, len(technologies))
        return TechResult(status=SectionStatus.COMPLETED, technologies=technologies)
