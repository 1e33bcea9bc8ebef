"""
Runtime settings for the generation pipeline, resolved from the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

DEFAULT_DATA_DIR = Path("colorbook_data")


@dataclass(frozen=True)
class GenerationSettings:
    """
    Tunable limits for one orchestrator instance.

    Attributes
    ----------
    worker_count:
        Size of the per-order worker pool, i.e. the maximum number of
        illustration calls in flight for a single order.
    rate_limit_calls:
        Call budget per rolling window, shared by all workers of an order.
    rate_limit_period:
        Length of the rolling window in seconds.
    page_attempts:
        Attempts allowed per page. Moderation substitutions and transient
        retries draw from the same budget.
    retry_delay:
        Fixed pause in seconds before retrying a rate-limited or transient
        failure with the same prompt.
    failure_ceiling:
        Number of permanently failed pages after which queued pages of the
        order are dropped.
    failure_threshold:
        Moderation rejections after which a prompt is blocked.
    data_dir:
        Root directory for the order store, artifacts and the failure map.
    """

    worker_count: int = 2
    rate_limit_calls: int = 4
    rate_limit_period: float = 60.0
    page_attempts: int = 5
    retry_delay: float = 5.0
    failure_ceiling: int = 50
    failure_threshold: int = 10
    data_dir: Path = DEFAULT_DATA_DIR

    def __post_init__(self) -> None:
        if self.worker_count < 1:
            raise ValueError("worker_count must be at least 1.")
        if self.rate_limit_calls < 1:
            raise ValueError("rate_limit_calls must be at least 1.")
        if self.rate_limit_period <= 0:
            raise ValueError("rate_limit_period must be positive.")
        if self.page_attempts < 1:
            raise ValueError("page_attempts must be at least 1.")
        if self.retry_delay < 0:
            raise ValueError("retry_delay cannot be negative.")
        if self.failure_ceiling < 1:
            raise ValueError("failure_ceiling must be at least 1.")

    @property
    def failure_map_path(self) -> Path:
        return self.data_dir / "failed-prompts.json"

    @property
    def orders_dir(self) -> Path:
        return self.data_dir / "orders"

    @property
    def artifacts_dir(self) -> Path:
        return self.data_dir / "books"

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> "GenerationSettings":
        """
        Build settings from ``COLORBOOK_*`` variables; keyword overrides win.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for item in fields(cls):
            raw = env.get(f"COLORBOOK_{item.name.upper()}")
            if raw is None or not raw.strip():
                continue
            values[item.name] = _coerce(item.name, raw.strip(), item.default)
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


def _coerce(name: str, raw: str, default: Any) -> Any:
    try:
        if isinstance(default, Path):
            return Path(raw).expanduser()
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid value for COLORBOOK_{name.upper()}: {raw!r}") from exc
    return raw
