"""
Durable storage for assembled books.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from colorbook.common.errors import DocumentWriteFailure
from colorbook.common.storage import atomic_write_bytes

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Writes one PDF per order under ``root`` and returns its path as the reference."""

    def __init__(self, root: str | Path, *, filename_template: str = "coloring-book-{order_id}.pdf") -> None:
        self._root = Path(root)
        self._filename_template = filename_template

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, order_id: str) -> Path:
        if not order_id or any(sep in order_id for sep in ("/", "\\", "..")):
            raise ValueError(f"Invalid order identifier {order_id!r}.")
        return self._root / self._filename_template.format(order_id=order_id)

    async def save(self, order_id: str, data: bytes) -> str:
        """Persist ``data`` atomically; the reference is returned only once it is on disk."""
        target = self.path_for(order_id)
        try:
            await asyncio.to_thread(atomic_write_bytes, target, data)
        except OSError as exc:
            raise DocumentWriteFailure(f"Could not write {target}: {exc}") from exc
        logger.info("Saved book for order %s to %s (%d bytes)", order_id, target, len(data))
        return str(target)
