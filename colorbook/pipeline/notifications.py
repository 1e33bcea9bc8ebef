"""
Book-ready notifications sent once an order's document is available.
"""

from __future__ import annotations

import asyncio
import html
import logging
import os
from typing import Protocol

import requests

logger = logging.getLogger(__name__)

RESEND_ENDPOINT = "https://api.resend.com/emails"
DEFAULT_SENDER = "Coloring Book Creator <noreply@resend.dev>"


class Notifier(Protocol):
    async def notify_ready(self, email: str, order_id: str, artifact_reference: str) -> None:
        ...


class LoggingNotifier:
    """Notifier that only records the event, for local runs."""

    async def notify_ready(self, email: str, order_id: str, artifact_reference: str) -> None:
        logger.info("Order %s ready for %s at %s", order_id, email, artifact_reference)


class ResendNotifier:
    """
    Sends the book-ready email through the Resend HTTP API.

    Parameters
    ----------
    api_key:
        Resend API key. Falls back to ``RESEND_API_KEY``.
    sender:
        ``From`` header. Falls back to ``COLORBOOK_EMAIL_FROM``.
    download_base_url:
        Optional prefix joined with relative artifact references to build the
        link placed in the email.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        sender: str | None = None,
        download_base_url: str | None = None,
        session: requests.Session | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._api_key = api_key or os.getenv("RESEND_API_KEY")
        if not self._api_key:
            raise ValueError("Resend API key is required. Set RESEND_API_KEY or pass api_key.")
        self._sender = sender or os.getenv("COLORBOOK_EMAIL_FROM") or DEFAULT_SENDER
        self._download_base_url = download_base_url or os.getenv("COLORBOOK_DOWNLOAD_BASE_URL")
        self._session = session or requests.Session()
        self._timeout = timeout

    def download_link(self, artifact_reference: str) -> str:
        if artifact_reference.lower().startswith(("http://", "https://")) or not self._download_base_url:
            return artifact_reference
        return f"{self._download_base_url.rstrip('/')}/{artifact_reference.lstrip('/')}"

    async def notify_ready(self, email: str, order_id: str, artifact_reference: str) -> None:
        await asyncio.to_thread(self._send, email, order_id, artifact_reference)

    def _send(self, email: str, order_id: str, artifact_reference: str) -> None:
        link = html.escape(self.download_link(artifact_reference), quote=True)
        response = self._session.post(
            RESEND_ENDPOINT,
            headers={"Authorization": f"Bearer {self._api_key}"},
            json={
                "from": self._sender,
                "to": [email],
                "subject": "Your Coloring Book is Ready!",
                "html": (
                    "<p>Great news! Your personalised coloring book is ready.</p>"
                    f'<p><a href="{link}">Download your coloring book</a></p>'
                    f"<p>Order reference: {html.escape(order_id)}</p>"
                ),
            },
            timeout=self._timeout,
        )
        response.raise_for_status()
        logger.info("Sent book-ready email for order %s", order_id)
