"""Tests for the CapabilityAdapter failure boundary."""

from __future__ import annotations

import asyncio

import pytest

from qascan.adapters.base import CapabilityAdapter
from qascan.schemas.report import TechResult, SectionStatus


class _Adapter(CapabilityAdapter[TechResult]):
    def __init__(self, behaviour, timeout: float = 1.0) -> None:
        self._behaviour = behaviour
        self.timeout = timeout
        self.calls: list[tuple] = []

    @property
    def name(self) -> str:
        return "Test adapter"

    def failure(self, message: str) -> TechResult:
        return TechResult(status=SectionStatus.ERROR, error=f"failed: {message}")

    async def perform(self, url: str, *, report_id: str = "") -> TechResult:
        self.calls.append((url, report_id))
        return await self._behaviour()


class TestRun:
    @pytest.mark.asyncio
    async def test_passes_through_result(self) -> None:
        async def ok():
            return TechResult(status=SectionStatus.COMPLETED)

        adapter = _Adapter(ok)
        result = await adapter.run("https://a.com", report_id="r1")
        assert result.status == SectionStatus.COMPLETED
        assert adapter.calls == [("https://a.com", "r1")]

    @pytest.mark.asyncio
    async def test_exception_becomes_failure(self) -> None:
        async def boom():
            raise RuntimeError("connection reset")

        result = await _Adapter(boom).run("https://a.com")
        assert result.status == SectionStatus.ERROR
        assert result.error == "failed: connection reset"

    @pytest.mark.asyncio
    async def test_exception_without_message_uses_type_name(self) -> None:
        async def boom():
            raise KeyError()

        result = await _Adapter(boom).run("https://a.com")
        assert result.error == "failed: KeyError"

    @pytest.mark.asyncio
    async def test_timeout_becomes_failure(self) -> None:
        async def slow():
            await asyncio.sleep(5)
            return TechResult(status=SectionStatus.COMPLETED)

        result = await _Adapter(slow, timeout=0.05).run("https://a.com")
        assert result.status == SectionStatus.ERROR
        assert "timed out" in result.error
