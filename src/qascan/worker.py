"""Celery worker: runs queued scans through the orchestrator.

The orchestrator settles every outcome into the record itself and never
raises, so a task that returns is done. Only a run that exceeds
``timeouts.task`` is retried; once retries run out the record is marked
failed.
"""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any

from celery import Task

from qascan.agents.orchestrator.agent import ScanOrchestrator, build_orchestrator
from qascan.config import load_config
from qascan.schemas.config import RuntimeConfig
from qascan.schemas.report import ReportStatus
from qascan.schemas.task import ScanTaskPayload
from qascan.shared.celery_app import SCAN_TASK_NAME, celery_app
from qascan.shared.errors import ReportNotFoundError, ScanTimeoutError
from qascan.shared.report_store import FileReportStore

logger = logging.getLogger(__name__)

# Three deliveries in total, 30 s and then 60 s apart.
MAX_ATTEMPTS = 3
RETRY_BACKOFF_SECONDS = 30


@lru_cache(maxsize=1)
def get_worker_config() -> RuntimeConfig:
    """Config for this worker process, read once from ``QASCAN_CONFIG`` and the environment."""
    return load_config()


async def run_scan(orchestrator: ScanOrchestrator, payload: ScanTaskPayload, timeout: float) -> ReportStatus:
    """Run one pipeline, raising ``ScanTimeoutError`` if it outlives ``timeout``."""
    try:
        return await asyncio.wait_for(orchestrator.run(payload), timeout=timeout)
    except asyncio.TimeoutError:
        raise ScanTimeoutError(f"Scan timed out after {timeout:.0f}s") from None


async def _process(payload: ScanTaskPayload, config: RuntimeConfig) -> ReportStatus:
    store = FileReportStore(config.storage.data_dir)
    return await run_scan(build_orchestrator(config, store), payload, config.timeouts.task)


async def _mark_failed(config: RuntimeConfig, report_id: str, message: str) -> None:
    store = FileReportStore(config.storage.data_dir)
    try:
        await store.transition(report_id, ReportStatus.FAILED, error_message=message)
    except ReportNotFoundError:
        logger.error("Cannot mark report %s failed: no such record", report_id)


class ScanTask(Task):
    """Base for the scan task: logs retries and settles the record on final failure."""

    def on_retry(self, exc, task_id, args, kwargs, einfo) -> None:
        payload = ScanTaskPayload.model_validate(args[0])
        logger.warning(
            "Scan task %s for report %s failed (attempt %d/%d), retrying: %s",
            task_id, payload.report_id, self.request.retries + 1, MAX_ATTEMPTS, exc,
        )

    def on_failure(self, exc, task_id, args, kwargs, einfo) -> None:
        payload = ScanTaskPayload.model_validate(args[0])
        if isinstance(exc, ScanTimeoutError):
            message = str(exc)
        else:
            message = f"Critical task failure: {exc}"
        logger.error("Scan task %s for report %s gave up: %s", task_id, payload.report_id, message)
        asyncio.run(_mark_failed(get_worker_config(), payload.report_id, message))


@celery_app.task(
    bind=True,
    base=ScanTask,
    name=SCAN_TASK_NAME,
    acks_late=True,
    autoretry_for=(ScanTimeoutError,),
    retry_backoff=RETRY_BACKOFF_SECONDS,
    retry_jitter=False,
    max_retries=MAX_ATTEMPTS - 1,
)
def run_scan_task(self, payload: dict[str, Any]) -> str:
    """Run the scan pipeline for one queued report."""
    task = ScanTaskPayload.model_validate(payload)
    logger.info(
        "Processing scan task %s for report %s (attempt %d)",
        self.request.id, task.report_id, self.request.retries + 1,
    )
    status = asyncio.run(_process(task, get_worker_config()))
    logger.info("Scan task %s for report %s finished: %s", self.request.id, task.report_id, status.value)
    return status.value


def enqueue_scan(payload: ScanTaskPayload) -> str:
    """Publish a scan task to the broker; returns the Celery task id."""
    result = run_scan_task.apply_async(args=[payload.model_dump(mode="json")])
    return result.id
