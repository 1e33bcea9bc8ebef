"""
Random scene prompt selection that skips blocked and already-used prompts.
"""

from __future__ import annotations

import random
from pathlib import Path
from typing import Iterable, Sequence

import yaml

from colorbook.ai_generation.scenes import SCENE_PROMPTS

from .failure_tracker import PromptFailureTracker


class PromptSelector:
    """
    Draws distinct scene prompts from a catalog.

    A result shorter than requested means the eligible pool is exhausted.
    """

    def __init__(
        self,
        tracker: PromptFailureTracker,
        catalog: Sequence[str] = SCENE_PROMPTS,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._tracker = tracker
        self._catalog = tuple(dict.fromkeys(item.strip() for item in catalog if item and item.strip()))
        if not self._catalog:
            raise ValueError("Prompt catalog must contain at least one prompt.")
        self._rng = rng or random.Random()

    @property
    def catalog(self) -> tuple[str, ...]:
        return self._catalog

    def eligible(self, excluding: Iterable[str] = ()) -> list[str]:
        excluded = set(excluding) | self._tracker.blocked_prompts()
        return [prompt for prompt in self._catalog if prompt not in excluded]

    def available(self, excluding: Iterable[str] = ()) -> int:
        return len(self.eligible(excluding))

    def select(self, count: int, excluding: Iterable[str] = ()) -> list[str]:
        if count <= 0:
            return []
        pool = self.eligible(excluding)
        return self._rng.sample(pool, min(count, len(pool)))

    def select_one(self, excluding: Iterable[str] = ()) -> str | None:
        choices = self.select(1, excluding)
        return choices[0] if choices else None


def load_catalog(path: str | Path) -> tuple[str, ...]:
    """
    Load a scene catalog from a YAML file holding a list of strings
    (or a mapping with a ``prompts`` list).
    """
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("prompts")
    if not isinstance(data, list):
        raise ValueError("Prompt catalog YAML must contain a list of prompts.")
    prompts = tuple(str(item).strip() for item in data if item is not None and str(item).strip())
    if not prompts:
        raise ValueError("Prompt catalog YAML does not contain any prompts.")
    return prompts
