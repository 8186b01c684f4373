"""Report record store: partial-section writes and the status state machine.

Each pipeline branch writes only its own top-level section, so concurrent
branches never clobber each other. Status moves forward only; once a
record is terminal its status is final, but section writes that land
afterwards are still accepted (they only enrich the record).
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
from weakref import WeakValueDictionary

from pydantic import BaseModel

from qascan.schemas.report import SECTION_FIELDS, ReportRecord, ReportStatus, now_ms
from qascan.shared.errors import ReportNotFoundError

logger = logging.getLogger(__name__)


class ReportStore(ABC):
    """Keyed document store for ``ReportRecord``.

    Subclasses implement ``_load`` and ``_save``; the merge and state-machine
    rules live here so every backend enforces them identically.
    """

    def __init__(self) -> None:
        # an entry lives only while some coroutine holds or waits on it
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def _lock(self, report_id: str) -> asyncio.Lock:
        lock = self._locks.get(report_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[report_id] = lock
        return lock

    @abstractmethod
    async def _load(self, report_id: str) -> ReportRecord | None:
        """Return the stored record or None."""

    @abstractmethod
    async def _save(self, record: ReportRecord) -> None:
        """Persist the full record."""

    async def create(self, record: ReportRecord) -> ReportRecord:
        async with self._lock(record.id):
            await self._save(record)
        logger.info("Report %s created for %s", record.id, record.url)
        return record

    async def get(self, report_id: str) -> ReportRecord | None:
        return await self._load(report_id)

    async def update_sections(self, report_id: str, **sections: BaseModel | None) -> ReportRecord:
        """Overwrite the named sections and bump ``updated_at``.

        Re-running a step overwrites its section; nothing is appended.
        """
        unknown = set(sections) - set(SECTION_FIELDS)
        if unknown:
            raise ValueError(f"Not a report section: {sorted(unknown)}")

        async with self._lock(report_id):
            record = await self._require(report_id)
            if record.status.is_terminal:
                logger.info(
                    "Report %s is already %s; accepting late write to %s",
                    report_id, record.status.value, ", ".join(sorted(sections)),
                )
            updates: dict[str, Any] = dict(sections)
            updates["updated_at"] = _bump(record.updated_at)
            record = record.model_copy(update=updates)
            await self._save(record)
            return record

    async def transition(
        self,
        report_id: str,
        status: ReportStatus,
        *,
        error_message: str | None = None,
    ) -> bool:
        """Move the record to ``status`` if the state machine allows it.

        Returns False (and leaves the record untouched) for backward moves
        and for any change once the record is terminal.
        """
        async with self._lock(report_id):
            record = await self._require(report_id)
            if not record.status.can_transition_to(status):
                logger.warning(
                    "Report %s: ignoring status change %s -> %s",
                    report_id, record.status.value, status.value,
                )
                return False
            updates: dict[str, Any] = {"status": status, "updated_at": _bump(record.updated_at)}
            if status == ReportStatus.FAILED:
                updates["error_message"] = error_message or "Scan failed."
            record = record.model_copy(update=updates)
            await self._save(record)
            logger.info("Report %s status -> %s", report_id, status.value)
            return True

    async def _require(self, report_id: str) -> ReportRecord:
        record = await self._load(report_id)
        if record is None:
            raise ReportNotFoundError(report_id)
        return record


def _bump(previous: int) -> int:
    # strictly increasing, even within one millisecond or if the wall clock steps back
    return max(now_ms(), previous + 1)


class MemoryReportStore(ReportStore):
    """In-process store used by tests and inline ``qascan scan`` runs."""

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, ReportRecord] = {}

    async def _load(self, report_id: str) -> ReportRecord | None:
        record = self._records.get(report_id)
        return record.model_copy(deep=True) if record else None

    async def _save(self, record: ReportRecord) -> None:
        self._records[record.id] = record.model_copy(deep=True)


class FileReportStore(ReportStore):
    """One JSON document per report under ``<data_dir>/reports``.

    Writes go to a temp file in the same directory and are swapped in with
    ``os.replace`` so readers never see a half-written document.
    """

    def __init__(self, data_dir: str | Path) -> None:
        super().__init__()
        self.root = Path(data_dir) / "reports"
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, report_id: str) -> Path:
        if not report_id or "/" in report_id or "\\" in report_id or report_id.startswith("."):
            raise ValueError(f"Invalid report id: {report_id!r}")
        return self.root / f"{report_id}.json"

    async def _load(self, report_id: str) -> ReportRecord | None:
        try:
            path = self._path(report_id)
        except ValueError:
            return None
        return await asyncio.to_thread(self._read_document, path)

    async def _save(self, record: ReportRecord) -> None:
        await asyncio.to_thread(self._write_document, record)

    # Blocking helpers, run in a worker thread.

    @staticmethod
    def _read_document(path: Path) -> ReportRecord | None:
        try:
            return ReportRecord.model_validate_json(path.read_text())
        except FileNotFoundError:
            return None

    def _write_document(self, record: ReportRecord) -> None:
        path = self._path(record.id)
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f".{record.id}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as fh:
                fh.write(record.model_dump_json(indent=2))
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
