"""Tests for the generation registry and book-ready notifiers."""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from colorbook.pipeline.notifications import RESEND_ENDPOINT, LoggingNotifier, ResendNotifier
from colorbook.pipeline.orders import Order
from colorbook.pipeline.registry import GenerationRegistry

from .conftest import make_png


class TestGenerationRegistry:
    def test_claim_is_exclusive_until_release(self, registry):
        assert registry.claim("o1") is True
        assert registry.claim("o1") is False
        assert registry.active_orders == frozenset({"o1"})

        registry.release("o1")

        assert registry.claim("o1") is True

    @pytest.mark.asyncio
    async def test_reference_image_cached_while_active(self, registry, tmp_path):
        image = make_png((8, 8))
        path = tmp_path / "ref.png"
        path.write_bytes(image)
        order = Order(order_id="o1", total_pages=1, source_image=str(path))
        registry.claim("o1")

        first = await registry.reference_image(order)
        path.unlink()
        second = await registry.reference_image(order)

        assert first == second == image

    def test_closed_registry_refuses_claims(self, tracker):
        registry = GenerationRegistry(tracker)
        registry.claim("o1")

        registry.close()

        assert registry.closed
        assert registry.active_orders == frozenset()
        with pytest.raises(RuntimeError):
            registry.claim("o2")


class TestNotifiers:
    @pytest.mark.asyncio
    async def test_logging_notifier(self, caplog):
        caplog.set_level("INFO", logger="colorbook.pipeline.notifications")

        await LoggingNotifier().notify_ready("a@example.com", "o1", "books/o1.pdf")

        assert "o1" in caplog.text

    @pytest.mark.asyncio
    async def test_resend_notifier_posts_email(self, monkeypatch):
        monkeypatch.delenv("COLORBOOK_EMAIL_FROM", raising=False)
        session = Mock()
        notifier = ResendNotifier(
            api_key="re_test",
            download_base_url="https://books.example.com/downloads/",
            session=session,
        )

        await notifier.notify_ready("a@example.com", "o1", "coloring-book-o1.pdf")

        url = session.post.call_args.args[0]
        kwargs = session.post.call_args.kwargs
        assert url == RESEND_ENDPOINT
        assert kwargs["headers"] == {"Authorization": "Bearer re_test"}
        assert kwargs["json"]["to"] == ["a@example.com"]
        assert "https://books.example.com/downloads/coloring-book-o1.pdf" in kwargs["json"]["html"]
        session.post.return_value.raise_for_status.assert_called_once()

    def test_resend_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("RESEND_API_KEY", raising=False)

        with pytest.raises(ValueError):
            ResendNotifier()
