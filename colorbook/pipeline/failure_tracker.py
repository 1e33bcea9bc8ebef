"""
Durable bookkeeping of prompts rejected by the illustration service's content policy.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from colorbook.common.storage import atomic_write_bytes

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 10
DEFAULT_HISTORY_SIZE = 5
MAX_ERROR_LENGTH = 200
WARNING_MARGIN = 3


@dataclass
class PromptFailureRecord:
    """Failure history of a single prompt."""

    count: int = 0
    last_failed: str = ""
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "PromptFailureRecord":
        errors = payload.get("errors") or []
        return cls(
            count=int(payload.get("count", 0)),
            last_failed=str(payload.get("last_failed") or payload.get("lastFailed") or ""),
            errors=[str(item) for item in errors],
        )


@dataclass(frozen=True)
class TrackedPrompt:
    prompt: str
    count: int
    blocked: bool


@dataclass(frozen=True)
class TrackingSummary:
    """Snapshot of the tracker, most-failed prompts first."""

    total: int
    blocked: int
    warning: int
    prompts: tuple[TrackedPrompt, ...]


class PromptFailureTracker:
    """
    Counts moderation rejections per prompt and blocks prompts past a threshold.

    The whole map is rewritten to ``path`` after every mutation, so blocking
    survives restarts. A missing or unreadable file starts an empty map.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        threshold: int = DEFAULT_THRESHOLD,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be at least 1.")
        self._path = Path(path)
        self._threshold = threshold
        self._history_size = max(1, history_size)
        self._lock = threading.Lock()
        self._records: dict[str, PromptFailureRecord] = {}
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def threshold(self) -> int:
        return self._threshold

    def record_failure(self, prompt: str, error_message: str) -> int:
        """
        Count one rejection of ``prompt`` and persist the map. Returns the new count.
        """
        with self._lock:
            record = self._records.setdefault(prompt, PromptFailureRecord())
            record.count += 1
            record.last_failed = datetime.now(timezone.utc).isoformat()
            record.errors.append(str(error_message)[:MAX_ERROR_LENGTH])
            del record.errors[: -self._history_size]
            count = record.count
            self._save_locked()

        logger.warning(
            "Prompt failed (%d/%d): %r", count, self._threshold, _preview(prompt)
        )
        if count == self._threshold:
            logger.error("Prompt blocked after %d failures: %r", count, prompt)
        return count

    def is_blocked(self, prompt: str) -> bool:
        with self._lock:
            record = self._records.get(prompt)
            return record is not None and record.count >= self._threshold

    def failure_count(self, prompt: str) -> int:
        with self._lock:
            record = self._records.get(prompt)
            return record.count if record else 0

    def blocked_prompts(self) -> set[str]:
        with self._lock:
            return {
                prompt
                for prompt, record in self._records.items()
                if record.count >= self._threshold
            }

    def record(self, prompt: str) -> PromptFailureRecord | None:
        """Return a copy of the stored record for ``prompt``, if any."""
        with self._lock:
            record = self._records.get(prompt)
            if record is None:
                return None
            return PromptFailureRecord(record.count, record.last_failed, list(record.errors))

    def summary(self) -> TrackingSummary:
        with self._lock:
            tracked = sorted(
                (
                    TrackedPrompt(prompt, record.count, record.count >= self._threshold)
                    for prompt, record in self._records.items()
                ),
                key=lambda item: item.count,
                reverse=True,
            )
        warning_floor = self._threshold - WARNING_MARGIN
        return TrackingSummary(
            total=len(tracked),
            blocked=sum(1 for item in tracked if item.blocked),
            warning=sum(1 for item in tracked if not item.blocked and item.count >= warning_floor),
            prompts=tuple(tracked),
        )

    def reset(self, prompt: str) -> bool:
        """Forget the failures of ``prompt``. Returns False if it was not tracked."""
        with self._lock:
            if self._records.pop(prompt, None) is None:
                return False
            self._save_locked()
        logger.info("Reset failures for %r", _preview(prompt))
        return True

    def reset_all(self) -> None:
        with self._lock:
            cleared = len(self._records)
            self._records.clear()
            self._save_locked()
        logger.info("Reset all %d tracked prompts", cleared)

    # ------------------------------------------------------------------ persistence

    def _load(self) -> None:
        if not self._path.exists():
            logger.info("No failed prompt map at %s, starting fresh", self._path)
            return

        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(payload, Mapping):
                raise ValueError("failed prompt map must be a JSON object")
            records = {
                str(prompt): PromptFailureRecord.from_mapping(data)
                for prompt, data in payload.items()
            }
        except (OSError, ValueError, TypeError, AttributeError):
            logger.exception("Could not read failed prompt map at %s; starting empty.", self._path)
            return

        self._records = records
        logger.info("Loaded %d tracked prompts from %s", len(records), self._path)
        for prompt, record in records.items():
            if record.count >= self._threshold:
                logger.info("Blocked (%d failures): %r", record.count, _preview(prompt))
            elif record.count >= self._threshold - WARNING_MARGIN:
                logger.info(
                    "Near threshold (%d/%d failures): %r",
                    record.count,
                    self._threshold,
                    _preview(prompt),
                )

    def _save_locked(self) -> None:
        payload = {prompt: asdict(record) for prompt, record in self._records.items()}
        atomic_write_bytes(
            self._path,
            json.dumps(payload, indent=2, ensure_ascii=False).encode("utf-8"),
        )


def _preview(prompt: str, length: int = 50) -> str:
    return prompt if len(prompt) <= length else prompt[:length] + "..."
