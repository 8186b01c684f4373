"""Capability adapter ABC: the failure boundary every external call goes through."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=BaseModel)


class CapabilityAdapter(ABC, Generic[R]):
    """Wraps one external capability and normalizes its outcome.

    Subclasses implement:
    - ``name``: human-readable name for logs and error messages
    - ``perform(...)``: the actual call, free to raise
    - ``failure(message)``: the adapter's failure result shape

    Callers use ``run(...)``, which bounds ``perform`` by ``timeout`` and
    turns any exception or timeout into ``failure(...)``. ``run`` never
    raises, except for cancellation of the calling task.
    """

    timeout: float = 60.0

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for logs."""

    @abstractmethod
    async def perform(self, *args: Any, **kwargs: Any) -> R:
        """Call the external capability."""

    @abstractmethod
    def failure(self, message: str) -> R:
        """Build this adapter's failure result."""

    async def run(self, *args: Any, report_id: str = "", **kwargs: Any) -> R:
        try:
            return await asyncio.wait_for(
                self.perform(*args, report_id=report_id, **kwargs), timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error("%s timed out after %.0fs for report %s", self.name, self.timeout, report_id)
            return self.failure(f"timed out after {self.timeout:.0f}s")
        except Exception as exc:
            logger.exception("%s failed for report %s", self.name, report_id)
            return self.failure(str(exc) or type(exc).__name__)
