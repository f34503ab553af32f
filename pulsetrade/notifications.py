"""Notification dispatch for bot lifecycle, signal and order events.

The bot only calls ``notify(title, body, data)``; which provider delivers
the message is decided here.
"""

import logging
from typing import Optional, Protocol, runtime_checkable

import httpx

logger = logging.getLogger("pulsetrade.notifications")


@runtime_checkable
class Notifier(Protocol):
    """Interface every notification backend satisfies."""

    async def notify(self, title: str, body: str, data: Optional[dict] = None) -> None:
        ...


class LogNotifier:
    """Writes notifications to the log.  Used when no backend is configured."""

    async def notify(self, title: str, body: str, data: Optional[dict] = None) -> None:
        logger.info("%s — %s", title, body.replace("\n", " | "))


class WebhookNotifier:
    """POSTs notifications as JSON to a webhook URL.

    Payload: ``{"title": ..., "body": ..., "data": {...}}``.
    """

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self._url = url
        self._timeout = timeout

    async def notify(self, title: str, body: str, data: Optional[dict] = None) -> None:
        payload = {"title": title, "body": body, "data": data or {}}
        async with httpx.AsyncClient() as client:
            resp = await client.post(self._url, json=payload, timeout=self._timeout)
        resp.raise_for_status()
        logger.debug("Webhook notification sent: %s", title)


def build_notifier(webhook_url: str = "") -> Notifier:
    """Return a ``WebhookNotifier`` when *webhook_url* is set, else ``LogNotifier``."""
    if webhook_url:
        return WebhookNotifier(webhook_url)
    return LogNotifier()
