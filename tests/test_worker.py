"""Tests for the Celery scan task: retry policy and final-failure handling."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from qascan import worker
from qascan.schemas.config import RuntimeConfig
from qascan.schemas.report import ReportRecord, ReportStatus
from qascan.schemas.task import ScanTaskPayload
from qascan.shared.celery_app import (
    SCAN_TASK_NAME,
    TIME_LIMIT_GRACE_SECONDS,
    celery_app,
    create_celery_app,
)
from qascan.shared.errors import ScanTimeoutError
from qascan.shared.report_store import FileReportStore


async def _slow_run(payload):
    await asyncio.sleep(5)
    return ReportStatus.COMPLETED


def _orchestrator(**kwargs) -> AsyncMock:
    orchestrator = AsyncMock()
    orchestrator.run = AsyncMock(**kwargs)
    return orchestrator


@pytest.fixture
def worker_config(tmp_path: Path, monkeypatch) -> RuntimeConfig:
    """Runs tasks in-process against a file store under tmp_path."""
    config = RuntimeConfig(storage={"data_dir": str(tmp_path)}, timeouts={"task": 0.05})
    monkeypatch.setattr(worker, "get_worker_config", lambda: config)
    monkeypatch.setitem(celery_app.conf, "task_always_eager", True)
    return config


def _use(monkeypatch, orchestrator: AsyncMock) -> None:
    monkeypatch.setattr(worker, "build_orchestrator", lambda config, store, **kwargs: orchestrator)


def _new_report(config: RuntimeConfig) -> ScanTaskPayload:
    store = FileReportStore(config.storage.data_dir)
    record = asyncio.run(store.create(ReportRecord(url="https://example.com")))
    return ScanTaskPayload(report_id=record.id, url_to_scan=record.url, ai_provider="openai")


def _load(config: RuntimeConfig, report_id: str) -> ReportRecord:
    return asyncio.run(FileReportStore(config.storage.data_dir).get(report_id))


class TestRunScan:
    @pytest.mark.asyncio
    async def test_returns_status(self) -> None:
        orchestrator = _orchestrator(return_value=ReportStatus.FAILED)
        payload = ScanTaskPayload(report_id="analysis_1_a", url_to_scan="https://example.com")
        assert await worker.run_scan(orchestrator, payload, timeout=1) == ReportStatus.FAILED

    @pytest.mark.asyncio
    async def test_timeout_raises(self) -> None:
        orchestrator = _orchestrator(side_effect=_slow_run)
        payload = ScanTaskPayload(report_id="analysis_1_a", url_to_scan="https://example.com")
        with pytest.raises(ScanTimeoutError, match="Scan timed out after 0s"):
            await worker.run_scan(orchestrator, payload, timeout=0.05)


class TestScanTask:
    def test_enqueue_runs_the_pipeline(self, worker_config, monkeypatch) -> None:
        orchestrator = _orchestrator(return_value=ReportStatus.COMPLETED)
        _use(monkeypatch, orchestrator)
        payload = _new_report(worker_config)

        task_id = worker.enqueue_scan(payload)

        assert task_id
        assert orchestrator.run.await_count == 1
        assert orchestrator.run.await_args.args[0] == payload

    def test_returns_terminal_status(self, worker_config, monkeypatch) -> None:
        _use(monkeypatch, _orchestrator(return_value=ReportStatus.FAILED))
        payload = _new_report(worker_config)

        result = worker.run_scan_task.apply(args=[payload.model_dump(mode="json")])

        # a failed scan is still a finished task
        assert result.successful()
        assert result.get() == "failed"

    def test_timeout_retried_then_record_failed(self, worker_config, monkeypatch) -> None:
        orchestrator = _orchestrator(side_effect=_slow_run)
        _use(monkeypatch, orchestrator)
        payload = _new_report(worker_config)

        result = worker.run_scan_task.apply(args=[payload.model_dump(mode="json")])

        assert orchestrator.run.await_count == worker.MAX_ATTEMPTS
        assert result.failed()
        record = _load(worker_config, payload.report_id)
        assert record.status == ReportStatus.FAILED
        assert record.error_message == "Scan timed out after 0s"

    def test_unexpected_error_is_not_retried(self, worker_config, monkeypatch) -> None:
        orchestrator = _orchestrator(side_effect=RuntimeError("browser pool exhausted"))
        _use(monkeypatch, orchestrator)
        payload = _new_report(worker_config)

        result = worker.run_scan_task.apply(args=[payload.model_dump(mode="json")])

        assert orchestrator.run.await_count == 1
        assert result.failed()
        record = _load(worker_config, payload.report_id)
        assert record.status == ReportStatus.FAILED
        assert record.error_message == "Critical task failure: browser pool exhausted"

    def test_final_failure_keeps_terminal_record(self, worker_config, monkeypatch) -> None:
        _use(monkeypatch, _orchestrator(side_effect=_slow_run))
        payload = _new_report(worker_config)
        store = FileReportStore(worker_config.storage.data_dir)
        asyncio.run(store.transition(payload.report_id, ReportStatus.COMPLETED))

        worker.run_scan_task.apply(args=[payload.model_dump(mode="json")])

        record = _load(worker_config, payload.report_id)
        assert record.status == ReportStatus.COMPLETED
        assert record.error_message is None

    def test_final_failure_for_missing_record(self, worker_config, monkeypatch) -> None:
        _use(monkeypatch, _orchestrator(side_effect=_slow_run))
        payload = ScanTaskPayload(report_id="analysis_0_missing", url_to_scan="https://example.com")

        result = worker.run_scan_task.apply(args=[payload.model_dump(mode="json")])

        assert result.failed()


class TestCeleryApp:
    def test_task_options(self) -> None:
        task = worker.run_scan_task
        assert task.name == SCAN_TASK_NAME
        assert task.acks_late is True
        assert task.autoretry_for == (ScanTimeoutError,)
        assert task.max_retries == worker.MAX_ATTEMPTS - 1
        assert task.retry_backoff == worker.RETRY_BACKOFF_SECONDS

    def test_app_built_from_runtime_config(self) -> None:
        app = create_celery_app(RuntimeConfig(
            queue={"broker_url": "memory://", "queue_name": "scans", "always_eager": True},
            timeouts={"task": 120},
        ))
        conf = app.conf

        assert conf.broker_url == "memory://"
        assert conf.task_always_eager is True
        assert conf.task_default_queue == "scans"
        assert conf.task_routes[SCAN_TASK_NAME] == {"queue": "scans"}
        assert conf.task_time_limit == 120 + TIME_LIMIT_GRACE_SECONDS
        assert conf.task_acks_late is True
        assert conf.task_reject_on_worker_lost is True
        assert conf.worker_prefetch_multiplier == 1

    def test_worker_reconnects_to_broker(self) -> None:
        conf = create_celery_app(RuntimeConfig()).conf
        assert conf.broker_connection_retry_on_startup is True
        assert conf.task_ignore_result is True
