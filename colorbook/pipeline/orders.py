"""
Order records, their lifecycle, and the stores the orchestrator reads and updates.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence

import yaml

from colorbook.common.errors import InvalidStatusTransition, OrderNotFoundError
from colorbook.common.images import sniff_mime_type
from colorbook.common.storage import atomic_write_bytes

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.FAILED)


# generating -> generating is a resume after a restart.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.GENERATING, OrderStatus.FAILED}),
    OrderStatus.PAID: frozenset({OrderStatus.GENERATING, OrderStatus.FAILED}),
    OrderStatus.GENERATING: frozenset(
        {OrderStatus.GENERATING, OrderStatus.COMPLETED, OrderStatus.FAILED}
    ),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.FAILED: frozenset(),
}

RESUMABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PAID, OrderStatus.GENERATING})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(order_id: str, current: OrderStatus, target: OrderStatus) -> None:
    if not can_transition(current, target):
        raise InvalidStatusTransition(
            f"Order {order_id} cannot move from {current.value} to {target.value}."
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Order:
    """
    A colouring book order as seen by the generation pipeline.

    ``images`` only ever holds a gap-free prefix of the book; ``pages_generated``
    counts every successful page of the current run and may be ahead of it.
    ``prompts`` holds the scene prompt that produced each persisted image.
    """

    order_id: str
    total_pages: int
    source_image: str | bytes
    email: str | None = None
    status: OrderStatus = OrderStatus.PENDING
    pages_generated: int = 0
    images: list[bytes] = field(default_factory=list)
    prompts: list[str | None] = field(default_factory=list)
    detail_level: str = "1"
    captions: list[str | None] = field(default_factory=list)
    artifact_reference: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @property
    def contiguous_pages(self) -> int:
        return len(self.images)

    @property
    def resume_point(self) -> int:
        """First 1-based page number that has not been persisted yet."""
        return self.contiguous_pages + 1

    def caption_for(self, index: int) -> str | None:
        if 0 <= index < len(self.captions):
            caption = self.captions[index]
            return caption.strip() or None if caption else None
        return None

    def prompt_for(self, index: int) -> str | None:
        if 0 <= index < len(self.prompts):
            return self.prompts[index] or None
        return None

    def copy(self) -> "Order":
        return replace(
            self,
            images=list(self.images),
            prompts=list(self.prompts),
            captions=list(self.captions),
        )


class OrderStore(Protocol):
    """Persistence interface the orchestrator and assembler depend on."""

    async def get_order(self, order_id: str) -> Order | None:
        ...

    async def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        completed_at: datetime | None = None,
        artifact_reference: str | None = None,
    ) -> None:
        ...

    async def update_order_progress(
        self,
        order_id: str,
        success_count: int,
        images: Sequence[bytes],
        prompts: Sequence[str | None] = (),
    ) -> None:
        ...

    async def get_orders_to_resume(self) -> list[Order]:
        ...


def _validate_images(order_id: str, images: Sequence[bytes | None], total_pages: int) -> list[bytes]:
    if len(images) > total_pages:
        raise ValueError(f"Order {order_id} has {total_pages} pages, got {len(images)} images.")
    for index, image in enumerate(images):
        if not image:
            raise ValueError(f"Order {order_id} image list has a gap at slot {index}.")
    return [bytes(image) for image in images]  # type: ignore[arg-type]


class InMemoryOrderStore:
    """
    Dictionary-backed :class:`OrderStore`, used by tests and one-off runs.
    """

    def __init__(self, orders: Sequence[Order] = ()) -> None:
        self._orders: dict[str, Order] = {order.order_id: order.copy() for order in orders}

    async def create_order(
        self,
        *,
        source_image: str | bytes,
        total_pages: int,
        email: str | None = None,
        detail_level: str = "1",
        captions: Sequence[str | None] = (),
        order_id: str | None = None,
        status: OrderStatus = OrderStatus.PENDING,
    ) -> Order:
        order = Order(
            order_id=order_id or uuid.uuid4().hex,
            total_pages=_validate_total_pages(total_pages),
            source_image=source_image,
            email=email,
            status=status,
            detail_level=detail_level,
            captions=list(captions),
        )
        self._orders[order.order_id] = order
        return order.copy()

    async def get_order(self, order_id: str) -> Order | None:
        order = self._orders.get(order_id)
        return order.copy() if order else None

    async def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        completed_at: datetime | None = None,
        artifact_reference: str | None = None,
    ) -> None:
        order = self._require(order_id)
        status = OrderStatus(status)
        ensure_transition(order_id, order.status, status)
        order.status = status
        if completed_at is not None:
            order.completed_at = completed_at
        if artifact_reference is not None:
            order.artifact_reference = artifact_reference

    async def update_order_progress(
        self,
        order_id: str,
        success_count: int,
        images: Sequence[bytes],
        prompts: Sequence[str | None] = (),
    ) -> None:
        order = self._require(order_id)
        order.images = _validate_images(order_id, images, order.total_pages)
        order.prompts = _align_prompts(prompts, len(order.images))
        order.pages_generated = success_count

    async def get_orders_to_resume(self) -> list[Order]:
        return [order.copy() for order in self._orders.values() if order.status in RESUMABLE_STATUSES]

    def _require(self, order_id: str) -> Order:
        try:
            return self._orders[order_id]
        except KeyError:
            raise OrderNotFoundError(f"Order {order_id} not found.") from None


class FileOrderStore:
    """
    Directory-backed :class:`OrderStore`.

    Layout per order::

        <root>/<order_id>/order.yaml
        <root>/<order_id>/source.<ext>
        <root>/<order_id>/pages/page-000.png

    Metadata is rewritten atomically; page files are written before the
    metadata that references them.
    """

    METADATA_FILE = "order.yaml"

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)
        self._lock = threading.Lock()

    @property
    def root(self) -> Path:
        return self._root

    async def create_order(
        self,
        *,
        source_image: str | bytes,
        total_pages: int,
        email: str | None = None,
        detail_level: str = "1",
        captions: Sequence[str | None] = (),
        order_id: str | None = None,
        status: OrderStatus = OrderStatus.PENDING,
    ) -> Order:
        order = Order(
            order_id=order_id or uuid.uuid4().hex,
            total_pages=_validate_total_pages(total_pages),
            source_image=source_image,
            email=email,
            status=status,
            detail_level=detail_level,
            captions=list(captions),
        )
        return await asyncio.to_thread(self._create_blocking, order)

    async def get_order(self, order_id: str) -> Order | None:
        return await asyncio.to_thread(self._load_blocking, order_id)

    async def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        completed_at: datetime | None = None,
        artifact_reference: str | None = None,
    ) -> None:
        await asyncio.to_thread(
            self._update_status_blocking, order_id, OrderStatus(status), completed_at, artifact_reference
        )

    async def update_order_progress(
        self,
        order_id: str,
        success_count: int,
        images: Sequence[bytes],
        prompts: Sequence[str | None] = (),
    ) -> None:
        await asyncio.to_thread(
            self._update_progress_blocking, order_id, success_count, list(images), list(prompts)
        )

    async def get_orders_to_resume(self) -> list[Order]:
        return await asyncio.to_thread(self._scan_resumable_blocking)

    # ------------------------------------------------------------------ blocking helpers

    def _order_dir(self, order_id: str) -> Path:
        if not order_id or any(sep in order_id for sep in ("/", "\\", "..")):
            raise ValueError(f"Invalid order identifier {order_id!r}.")
        return self._root / order_id

    def _create_blocking(self, order: Order) -> Order:
        with self._lock:
            order_dir = self._order_dir(order.order_id)
            if (order_dir / self.METADATA_FILE).exists():
                raise ValueError(f"Order {order.order_id} already exists.")
            (order_dir / "pages").mkdir(parents=True, exist_ok=True)

            metadata = _order_to_metadata(order)
            if isinstance(order.source_image, (bytes, bytearray)):
                source_name = "source" + _extension_for(bytes(order.source_image))
                atomic_write_bytes(order_dir / source_name, bytes(order.source_image))
                metadata["source_file"] = source_name
                metadata["source_image"] = None
            self._write_metadata(order.order_id, metadata)
        return self._load_blocking(order.order_id)  # type: ignore[return-value]

    def _load_blocking(self, order_id: str) -> Order | None:
        order_dir = self._order_dir(order_id)
        metadata_path = order_dir / self.METADATA_FILE
        if not metadata_path.exists():
            return None

        metadata = yaml.safe_load(metadata_path.read_text(encoding="utf-8")) or {}
        if not isinstance(metadata, Mapping):
            raise ValueError(f"Order metadata at {metadata_path} must be a mapping.")

        images = [
            (order_dir / "pages" / name).read_bytes()
            for name in metadata.get("image_files") or []
        ]
        source_file = metadata.get("source_file")
        source_image = (
            str(order_dir / source_file) if source_file else str(metadata.get("source_image") or "")
        )
        return Order(
            order_id=str(metadata.get("order_id", order_id)),
            total_pages=int(metadata["total_pages"]),
            source_image=source_image,
            email=metadata.get("email"),
            status=OrderStatus(metadata.get("status", OrderStatus.PENDING.value)),
            pages_generated=int(metadata.get("pages_generated", 0)),
            images=images,
            prompts=_align_prompts(metadata.get("page_prompts") or [], len(images)),
            detail_level=str(metadata.get("detail_level", "1")),
            captions=list(metadata.get("captions") or []),
            artifact_reference=metadata.get("artifact_reference"),
            created_at=_parse_datetime(metadata.get("created_at")) or _utcnow(),
            completed_at=_parse_datetime(metadata.get("completed_at")),
        )

    def _read_metadata(self, order_id: str) -> dict[str, Any]:
        metadata_path = self._order_dir(order_id) / self.METADATA_FILE
        if not metadata_path.exists():
            raise OrderNotFoundError(f"Order {order_id} not found.")
        return dict(yaml.safe_load(metadata_path.read_text(encoding="utf-8")) or {})

    def _write_metadata(self, order_id: str, metadata: Mapping[str, Any]) -> None:
        text = yaml.safe_dump(dict(metadata), sort_keys=False, allow_unicode=True)
        atomic_write_bytes(self._order_dir(order_id) / self.METADATA_FILE, text.encode("utf-8"))

    def _update_status_blocking(
        self,
        order_id: str,
        status: OrderStatus,
        completed_at: datetime | None,
        artifact_reference: str | None,
    ) -> None:
        with self._lock:
            metadata = self._read_metadata(order_id)
            current = OrderStatus(metadata.get("status", OrderStatus.PENDING.value))
            ensure_transition(order_id, current, status)
            metadata["status"] = status.value
            if completed_at is not None:
                metadata["completed_at"] = completed_at.isoformat()
            if artifact_reference is not None:
                metadata["artifact_reference"] = artifact_reference
            self._write_metadata(order_id, metadata)

    def _update_progress_blocking(
        self,
        order_id: str,
        success_count: int,
        images: list[bytes],
        prompts: list[str | None],
    ) -> None:
        with self._lock:
            metadata = self._read_metadata(order_id)
            validated = _validate_images(order_id, images, int(metadata["total_pages"]))
            pages_dir = self._order_dir(order_id) / "pages"
            pages_dir.mkdir(parents=True, exist_ok=True)

            existing = list(metadata.get("image_files") or [])
            image_files: list[str] = []
            for index, image in enumerate(validated):
                name = f"page-{index:03d}{_extension_for(image)}"
                if index >= len(existing) or existing[index] != name or not (pages_dir / name).exists():
                    atomic_write_bytes(pages_dir / name, image)
                image_files.append(name)

            metadata["image_files"] = image_files
            metadata["page_prompts"] = _align_prompts(prompts, len(validated))
            metadata["pages_generated"] = int(success_count)
            self._write_metadata(order_id, metadata)

    def _scan_resumable_blocking(self) -> list[Order]:
        if not self._root.exists():
            return []
        orders: list[Order] = []
        for order_dir in sorted(path for path in self._root.iterdir() if path.is_dir()):
            try:
                order = self._load_blocking(order_dir.name)
            except (OSError, ValueError, KeyError, yaml.YAMLError):
                logger.exception("Skipping unreadable order directory %s", order_dir)
                continue
            if order is not None and order.status in RESUMABLE_STATUSES:
                orders.append(order)
        return orders


def _validate_total_pages(total_pages: int) -> int:
    total = int(total_pages)
    if total < 1:
        raise ValueError("total_pages must be at least 1.")
    return total


def _order_to_metadata(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.order_id,
        "status": order.status.value,
        "total_pages": order.total_pages,
        "pages_generated": order.pages_generated,
        "detail_level": order.detail_level,
        "email": order.email,
        "source_image": order.source_image if isinstance(order.source_image, str) else None,
        "captions": list(order.captions),
        "image_files": [],
        "page_prompts": [],
        "artifact_reference": order.artifact_reference,
        "created_at": order.created_at.isoformat(),
        "completed_at": order.completed_at.isoformat() if order.completed_at else None,
    }


def _align_prompts(prompts: Sequence[str | None], length: int) -> list[str | None]:
    aligned = [str(prompt) if prompt else None for prompt in list(prompts)[:length]]
    return aligned + [None] * (length - len(aligned))


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _extension_for(image: bytes) -> str:
    mime_type = sniff_mime_type(image)
    return {
        "image/jpeg": ".jpg",
        "image/webp": ".webp",
    }.get(mime_type or "", ".png")

