"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from colorbook.common.settings import GenerationSettings


class TestGenerationSettings:
    def test_defaults(self):
        settings = GenerationSettings()

        assert settings.worker_count == 2
        assert settings.rate_limit_calls == 4
        assert settings.rate_limit_period == 60.0
        assert settings.page_attempts == 5
        assert settings.retry_delay == 5.0
        assert settings.failure_ceiling == 50
        assert settings.failure_threshold == 10

    def test_from_env_with_overrides(self, tmp_path):
        environ = {
            "COLORBOOK_WORKER_COUNT": "3",
            "COLORBOOK_RETRY_DELAY": "0.5",
            "COLORBOOK_DATA_DIR": str(tmp_path),
            "COLORBOOK_PAGE_ATTEMPTS": " ",
        }

        settings = GenerationSettings.from_env(environ, worker_count=4, failure_ceiling=None)

        assert settings.worker_count == 4
        assert settings.retry_delay == 0.5
        assert settings.page_attempts == 5
        assert settings.data_dir == Path(tmp_path)
        assert settings.failure_map_path == Path(tmp_path) / "failed-prompts.json"
        assert settings.orders_dir == Path(tmp_path) / "orders"

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            GenerationSettings.from_env({"COLORBOOK_WORKER_COUNT": "many"})
        with pytest.raises(ValueError):
            GenerationSettings(worker_count=0)
        with pytest.raises(ValueError):
            GenerationSettings(retry_delay=-1)
