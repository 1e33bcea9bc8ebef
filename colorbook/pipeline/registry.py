"""
Process-lifetime state shared by every generation run.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from colorbook.common.images import load_image_bytes

from .failure_tracker import PromptFailureTracker
from .orders import Order

logger = logging.getLogger(__name__)


class GenerationRegistry:
    """
    Owns the active-order set, cached reference images and the failure tracker.

    Construct one per process at start-up and call :meth:`close` at shutdown.
    The active-order guard assumes a single process owns every order; running
    several instances against one store needs an external lock instead.
    """

    def __init__(self, failure_tracker: PromptFailureTracker) -> None:
        self.failure_tracker = failure_tracker
        self._active_orders: set[str] = set()
        self._reference_images: dict[str, bytes] = {}
        self._closed = False

    @classmethod
    def from_path(cls, failure_map_path: str | Path, *, threshold: int = 10) -> "GenerationRegistry":
        return cls(PromptFailureTracker(failure_map_path, threshold=threshold))

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active_orders(self) -> frozenset[str]:
        return frozenset(self._active_orders)

    def is_active(self, order_id: str) -> bool:
        return order_id in self._active_orders

    def claim(self, order_id: str) -> bool:
        """
        Mark ``order_id`` active. Returns False if it already was.

        There is no await between the check and the insert, so concurrent
        coroutines on one event loop cannot both succeed.
        """
        if self._closed:
            raise RuntimeError("GenerationRegistry is closed.")
        if order_id in self._active_orders:
            return False
        self._active_orders.add(order_id)
        return True

    def release(self, order_id: str) -> None:
        self._active_orders.discard(order_id)
        self._reference_images.pop(order_id, None)

    async def reference_image(self, order: Order) -> bytes:
        """Decode (once per active order) the order's reference image."""
        cached = self._reference_images.get(order.order_id)
        if cached is not None:
            return cached
        image = await asyncio.to_thread(load_image_bytes, order.source_image)
        if self.is_active(order.order_id):
            self._reference_images[order.order_id] = image
        return image

    def close(self) -> None:
        if self._active_orders:
            logger.warning(
                "Closing registry with %d active orders; they will resume on next start",
                len(self._active_orders),
            )
        self._active_orders.clear()
        self._reference_images.clear()
        self._closed = True
