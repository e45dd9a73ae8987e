"""
Reminder delivery.

A ``ChannelDirectory`` resolves where an owner is reachable; a
``NotificationPort`` delivers rendered text there. Adapters report failures
through ``DeliveryResult`` instead of raising, but callers must still tolerate
a raised exception.
"""

import logging
import uuid
from datetime import datetime
from typing import Protocol, runtime_checkable

import httpx
from pydantic import BaseModel

from ..clock import Clock, SystemClock
from ..config import NotificationSettings
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class OwnerChannel(BaseModel):
    """Delivery address for an owner, e.g. a Telegram chat."""

    gateway_type: str
    chat_id: str


class DeliveryResult(BaseModel):
    success: bool
    message_id: str | None = None
    error: str | None = None
    delivered_at: datetime | None = None

    @classmethod
    def ok(cls, message_id: str | None = None, delivered_at: datetime | None = None) -> "DeliveryResult":
        return cls(success=True, message_id=message_id, delivered_at=delivered_at)

    @classmethod
    def failed(cls, error: str) -> "DeliveryResult":
        return cls(success=False, error=error)


@runtime_checkable
class NotificationPort(Protocol):
    async def deliver(self, channel: OwnerChannel, text: str) -> DeliveryResult:
        """Send ``text`` to ``channel``."""


@runtime_checkable
class ChannelDirectory(Protocol):
    async def resolve(self, owner_id: str, project_id: str) -> OwnerChannel | None:
        """Return the owner's delivery channel, or None if they have none."""


class StaticChannelDirectory:
    """Channel lookup from a fixed ``owner_id -> chat_id`` mapping."""

    def __init__(self, gateway_type: str, chats: dict[str, str] | None = None, default_chat_id: str | None = None):
        self.gateway_type = gateway_type
        self.chats = dict(chats or {})
        self.default_chat_id = default_chat_id

    async def resolve(self, owner_id: str, project_id: str) -> OwnerChannel | None:
        chat_id = self.chats.get(owner_id, self.default_chat_id)
        if chat_id is None:
            return None
        return OwnerChannel(gateway_type=self.gateway_type, chat_id=chat_id)


class LoggingNotifier:
    """Writes notifications to the log. Development default."""

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or SystemClock()

    async def deliver(self, channel: OwnerChannel, text: str) -> DeliveryResult:
        logger.info(f"[notify {channel.gateway_type}:{channel.chat_id}] {text}")
        return DeliveryResult.ok(message_id=str(uuid.uuid4()), delivered_at=self.clock.now())


class TelegramNotifier:
    """Telegram Bot API ``sendMessage`` over httpx."""

    def __init__(
        self,
        bot_token: str,
        api_base: str = "https://api.telegram.org",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
    ):
        if not bot_token:
            raise ConfigurationError("Telegram notifier requires a bot token (KS_NOTIFY_TELEGRAM_BOT_TOKEN)")
        self._url = f"{api_base.rstrip('/')}/bot{bot_token}/sendMessage"
        self.timeout_seconds = timeout_seconds
        self._client = client
        self.clock = clock or SystemClock()

    async def _post(self, payload: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self._url, json=payload)
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.post(self._url, json=payload)

    async def deliver(self, channel: OwnerChannel, text: str) -> DeliveryResult:
        payload = {"chat_id": channel.chat_id, "text": text, "parse_mode": "Markdown"}
        try:
            response = await self._post(payload)
            if response.status_code == 400:
                # Markdown entity errors; resend as plain text
                logger.debug(f"Telegram rejected Markdown for chat {channel.chat_id}, retrying as plain text")
                payload.pop("parse_mode")
                response = await self._post(payload)
            response.raise_for_status()

            data = response.json()
            if not data.get("ok"):
                return DeliveryResult.failed(data.get("description", "Telegram API returned ok=false"))
            message_id = data.get("result", {}).get("message_id")
            return DeliveryResult.ok(
                message_id=str(message_id) if message_id is not None else None, delivered_at=self.clock.now()
            )

        except httpx.TimeoutException:
            logger.warning(f"Telegram delivery timeout after {self.timeout_seconds}s")
            return DeliveryResult.failed("timeout")
        except httpx.HTTPStatusError as e:
            logger.warning(f"Telegram delivery HTTP error {e.response.status_code}")
            return DeliveryResult.failed(f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Telegram delivery error: {type(e).__name__}")
            return DeliveryResult.failed(type(e).__name__)


class GatewayRouter:
    """Dispatches to one notifier per gateway type (``telegram``, ``log``, ...)."""

    def __init__(self, senders: dict[str, NotificationPort]):
        self.senders = senders

    async def deliver(self, channel: OwnerChannel, text: str) -> DeliveryResult:
        sender = self.senders.get(channel.gateway_type)
        if sender is None:
            return DeliveryResult.failed(f"No message sender available for gateway type: {channel.gateway_type}")
        return await sender.deliver(channel, text)


def create_notifier(
    notification_settings: NotificationSettings, clock: Clock | None = None
) -> tuple[NotificationPort, ChannelDirectory]:
    """Build the configured notifier and the channel directory that feeds it."""
    senders: dict[str, NotificationPort] = {"log": LoggingNotifier(clock=clock)}
    if notification_settings.provider == "telegram":
        senders["telegram"] = TelegramNotifier(
            bot_token=notification_settings.telegram_bot_token or "",
            api_base=notification_settings.telegram_api_base,
            timeout_seconds=notification_settings.timeout_seconds,
            clock=clock,
        )
        logger.info("Telegram message sender initialized")

    directory = StaticChannelDirectory(
        gateway_type=notification_settings.provider,
        chats=notification_settings.channels,
        default_chat_id=notification_settings.default_chat_id,
    )
    if not notification_settings.channels and notification_settings.default_chat_id is None:
        logger.warning("No notification channels configured; reminders will fire without delivery")
    return GatewayRouter(senders), directory
