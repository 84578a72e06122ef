from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

import httpx

from config import settings

logger = logging.getLogger(__name__)


class OutboundDeliveryError(Exception):
    """Raised by a messenger when the channel rejects or cannot take a message."""


@runtime_checkable
class OutboundMessenger(Protocol):
    async def send(self, identity: str, text: str) -> dict: ...


class WhatsAppMessenger:
    """WhatsApp Cloud API text sender."""

    GRAPH_URL = "https://graph.facebook.com/{version}/{phone_number_id}/messages"

    def __init__(self, token: str, phone_number_id: str, api_version: str = "v21.0", timeout_s: float = 10.0):
        self._url = self.GRAPH_URL.format(version=api_version, phone_number_id=phone_number_id)
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        self._timeout_s = timeout_s

    async def send(self, identity: str, text: str) -> dict:
        payload = {
            "messaging_product": "whatsapp",
            "to": identity,
            "type": "text",
            "text": {"body": text},
        }
        async with httpx.AsyncClient(timeout=self._timeout_s) as client:
            resp = await client.post(self._url, headers=self._headers, json=payload)
        if resp.status_code >= 400:
            raise OutboundDeliveryError(f"WhatsApp API error {resp.status_code}: {resp.text[:300]}")
        data = resp.json()
        message_ids = [m.get("id") for m in data.get("messages", []) if isinstance(m, dict)]
        return {"channel": "whatsapp", "message_ids": message_ids}


class LoggingMessenger:
    """Used when no channel credentials are configured; records what would be sent."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send(self, identity: str, text: str) -> dict:
        self.sent.append((identity, text))
        logger.info(f"Outbound (not delivered) to {identity}: {text[:120]!r}")
        return {"channel": "log", "message_ids": []}


def build_messenger() -> OutboundMessenger:
    if settings.WHATSAPP_TOKEN and settings.WHATSAPP_PHONE_NUMBER_ID:
        return WhatsAppMessenger(
            token=settings.WHATSAPP_TOKEN,
            phone_number_id=settings.WHATSAPP_PHONE_NUMBER_ID,
            api_version=settings.WHATSAPP_API_VERSION,
        )
    logger.warning("WhatsApp credentials not configured; outbound messages will only be logged")
    return LoggingMessenger()


_PENDING_SENDS: set[asyncio.Task] = set()


def _on_send_done(identity: str, task: asyncio.Task) -> None:
    _PENDING_SENDS.discard(task)
    if task.cancelled():
        logger.warning(f"Outbound send to {identity} was cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Outbound send to {identity} failed: {exc}")


def dispatch_outbound(messenger: OutboundMessenger | None, identity: str, text: str) -> asyncio.Task | None:
    """Fire-and-forget send; failures are logged and never retried."""
    if messenger is None:
        return None
    task = asyncio.get_running_loop().create_task(messenger.send(identity, text))
    _PENDING_SENDS.add(task)
    task.add_done_callback(lambda t: _on_send_done(identity, t))
    return task


async def drain_pending_sends() -> None:
    if _PENDING_SENDS:
        await asyncio.gather(*list(_PENDING_SENDS), return_exceptions=True)
