"""Pytest configuration and shared fakes for ColorBook tests."""

from __future__ import annotations

import asyncio
import io
import random
from collections import defaultdict
from typing import Sequence

import pytest
from PIL import Image, ImageDraw

from colorbook.pipeline.failure_tracker import PromptFailureTracker
from colorbook.pipeline.orders import InMemoryOrderStore
from colorbook.pipeline.prompt_selector import PromptSelector
from colorbook.pipeline.registry import GenerationRegistry

CATALOG = tuple(f"scene {index}" for index in range(1, 13))


def make_png(size: tuple[int, int] = (64, 96), *, line_art: bool = True) -> bytes:
    image = Image.new("L", size, 255)
    if line_art:
        draw = ImageDraw.Draw(image)
        width, height = size
        draw.rectangle((width // 4, height // 4, width * 3 // 4, height * 3 // 4), outline=0, width=4)
        draw.ellipse((width // 3, height // 3, width * 2 // 3, height * 2 // 3), outline=0, width=3)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


class OrderedRandom(random.Random):
    """Random source whose ``sample`` keeps catalog order, for predictable prompt choice."""

    def sample(self, population, k, *, counts=None):
        return list(population)[:k]


class VirtualClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += max(0.0, delay)
        await asyncio.sleep(0)


class FakeIllustrationService:
    """
    Scriptable illustration service.

    ``failures`` maps a prompt to the exceptions raised by its successive calls;
    once the list is used up (or for unlisted prompts) the call succeeds.
    ``always_fail`` maps a prompt to an exception raised on every call.
    """

    def __init__(self, clock: VirtualClock | None = None, *, yields: int = 3) -> None:
        self.clock = clock
        self.yields = yields
        self.calls: list[tuple[str, float]] = []
        self.cover_prompts: list[str] = []
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self.always_fail: dict[str, Exception] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.gate: asyncio.Event | None = None

    def calls_for(self, prompt: str) -> int:
        return sum(1 for called, _ in self.calls if called == prompt)

    @property
    def call_times(self) -> list[float]:
        return [started for _, started in self.calls]

    async def synthesize(
        self,
        prompt: str,
        reference_image: bytes,
        *,
        detail_level: str = "1",
        cover: bool = False,
    ) -> bytes:
        self.calls.append((prompt, self.clock() if self.clock else 0.0))
        if cover:
            self.cover_prompts.append(prompt)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                await self.gate.wait()
            for _ in range(self.yields):
                await asyncio.sleep(0)
            if prompt in self.always_fail:
                raise self.always_fail[prompt]
            if self.failures.get(prompt):
                raise self.failures[prompt].pop(0)
            return f"image:{prompt}".encode("utf-8")
        finally:
            self.in_flight -= 1


class FakeAssembler:
    def __init__(self, error: Exception | None = None, *, failing_orders: Sequence[str] = ()) -> None:
        self.error = error
        self.failing_orders = set(failing_orders)
        self.assembled: list[str] = []

    async def assemble(self, order_id: str) -> str:
        if self.error is not None and (not self.failing_orders or order_id in self.failing_orders):
            raise self.error
        self.assembled.append(order_id)
        return f"books/{order_id}.pdf"


class RecordingNotifier:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.sent: list[tuple[str, str, str]] = []

    async def notify_ready(self, email: str, order_id: str, artifact_reference: str) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append((email, order_id, artifact_reference))


class RecordingOrderStore(InMemoryOrderStore):
    """In-memory store that keeps every progress snapshot it was asked to persist."""

    def __init__(self, orders: Sequence = ()) -> None:
        super().__init__(orders)
        self.snapshots: list[tuple[int, list[bytes]]] = []

    async def update_order_progress(self, order_id, success_count, images, prompts=()):
        self.snapshots.append((success_count, list(images)))
        await super().update_order_progress(order_id, success_count, images, prompts)


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def blank_png() -> bytes:
    return make_png(line_art=False)


@pytest.fixture
def tracker(tmp_path) -> PromptFailureTracker:
    return PromptFailureTracker(tmp_path / "failed-prompts.json")


@pytest.fixture
def registry(tracker) -> GenerationRegistry:
    registry = GenerationRegistry(tracker)
    yield registry
    registry.close()


@pytest.fixture
def selector(tracker) -> PromptSelector:
    return PromptSelector(tracker, CATALOG, rng=OrderedRandom())


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def service(clock) -> FakeIllustrationService:
    return FakeIllustrationService(clock)


@pytest.fixture
def store() -> RecordingOrderStore:
    return RecordingOrderStore()
