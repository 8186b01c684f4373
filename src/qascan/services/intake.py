"""Scan intake: validate a request, create the record, enqueue the task."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable
from urllib.parse import urlparse

from qascan.schemas.report import ReportRecord, ReportStatus, RequestedAiConfig
from qascan.schemas.task import ScanAccepted, ScanRequest, ScanTaskPayload
from qascan.shared.ai_provider import SUPPORTED_PROVIDERS
from qascan.shared.errors import ConfigurationError, ScanValidationError
from qascan.shared.report_store import ReportStore

logger = logging.getLogger(__name__)

# Publishes a task payload and returns its task id (``qascan.worker.enqueue_scan``).
ScanDispatcher = Callable[[ScanTaskPayload], str]


def validate_url(url: str) -> str:
    """Return the trimmed URL, or raise ``ScanValidationError``."""
    url = (url or "").strip()
    if not url:
        raise ScanValidationError("URL is required in the request body.")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ScanValidationError("Invalid URL format. Please provide a valid HTTP/HTTPS URL.")
    return url


def validate_provider(provider: str | None) -> str | None:
    """Normalize an explicitly requested provider; unknown names are rejected."""
    if provider is None or not provider.strip():
        return None
    normalized = provider.strip().lower()
    if normalized not in SUPPORTED_PROVIDERS:
        raise ScanValidationError(f"Unsupported AI provider: {normalized}")
    return normalized


async def submit_scan(request: ScanRequest, store: ReportStore, dispatch: ScanDispatcher) -> ScanAccepted:
    """Create a ``pending`` record and enqueue its scan.

    Raises ``ScanValidationError`` for bad input (nothing is stored) and
    ``ConfigurationError`` if the task cannot be enqueued; in that case the
    record already exists and is marked ``failed``.
    """
    url = validate_url(request.url)
    provider = validate_provider(request.ai_provider)
    model = (request.ai_model or "").strip() or None

    record = ReportRecord(
        url=url,
        ai_config=RequestedAiConfig(provider=provider, model=model) if provider or model else None,
    )
    await store.create(record)

    payload = ScanTaskPayload(
        report_id=record.id,
        url_to_scan=url,
        ai_provider=provider,
        ai_model=model,
    )
    try:
        # publishing blocks on the broker connection
        task_id = await asyncio.to_thread(dispatch, payload)
    except Exception as exc:
        logger.exception("Could not enqueue scan task for report %s", record.id)
        await store.transition(
            record.id,
            ReportStatus.FAILED,
            error_message=f"Configuration error: could not enqueue scan task ({exc})",
        )
        raise ConfigurationError(f"Could not enqueue scan task: {exc}") from exc

    logger.info("Scan task %s enqueued for report %s", task_id, record.id)
    return ScanAccepted(report_id=record.id, url=url)
