"""Screenshot storage: local files addressed by ``file://`` references."""

from __future__ import annotations

import asyncio
from pathlib import Path
from urllib.parse import unquote, urlparse


class ScreenshotStorage:
    """Stores JPEGs under ``<data_dir>/screenshots/<report_id>/``.

    Re-saving the same viewport for a report overwrites the previous file,
    so a re-run never accumulates duplicates.
    """

    def __init__(self, data_dir: str | Path) -> None:
        self.root = Path(data_dir).resolve() / "screenshots"

    async def save(self, report_id: str, viewport: str, data: bytes) -> str:
        path = self.root / report_id / f"screenshot_{viewport}.jpg"

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        return path.as_uri()

    async def load(self, ref: str) -> bytes:
        """Read back an image saved by ``save``.

        Raises ``ValueError`` for references outside this storage root.
        """
        parsed = urlparse(ref)
        if parsed.scheme != "file":
            raise ValueError(f"Unsupported screenshot reference: {ref}")
        path = Path(unquote(parsed.path)).resolve()
        if self.root not in path.parents:
            raise ValueError(f"Screenshot reference outside storage root: {ref}")
        return await asyncio.to_thread(path.read_bytes)
