"""Notification delivery — routes rendered escalation messages to channels.

Channels map to providers (webhook, Slack, Telegram, Discord). A provider
raises on failure; ``NotificationManager.send`` never does, it returns a
``DeliveryResult`` so callers can record what happened.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from .templates import RenderedMessage, render

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    success: bool
    channel: str
    recipient: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "channel": self.channel,
            "recipient": self.recipient,
            "error": self.error,
        }


class NotificationSender(Protocol):
    def send(self, channel: str, recipient: str, template_key: str, data: dict[str, Any]) -> DeliveryResult: ...


class NotificationProvider(Protocol):
    def deliver(self, recipient: str, message: RenderedMessage) -> None: ...


class NotificationManager:
    """Central dispatcher: channel name → provider."""

    def __init__(self, providers: dict[str, NotificationProvider] | None = None) -> None:
        self._providers: dict[str, NotificationProvider] = dict(providers or {})

    def register(self, channel: str, provider: NotificationProvider) -> None:
        self._providers[channel] = provider

    @property
    def channels(self) -> list[str]:
        return sorted(self._providers)

    def status(self) -> dict[str, Any]:
        return {"enabled": bool(self._providers), "channels": self.channels}

    def send(self, channel: str, recipient: str, template_key: str, data: dict[str, Any]) -> DeliveryResult:
        provider = self._providers.get(channel)
        if provider is None:
            logger.warning("No provider for channel %s, dropping %s notification", channel, template_key)
            return DeliveryResult(False, channel, recipient, f"No provider for channel: {channel}")

        try:
            message = render(template_key, data)
            provider.deliver(recipient, message)
        except Exception as exc:
            logger.warning("%s notification via %s failed: %s", template_key, channel, exc)
            return DeliveryResult(False, channel, recipient, str(exc))

        logger.info("Sent %s notification via %s", template_key, channel)
        return DeliveryResult(True, channel, recipient)


def build_notifier(
    slack_webhook_url: str = "",
    telegram_bot_token: str = "",
    timeout: float = 10.0,
) -> NotificationManager:
    """Manager with the webhook/discord providers plus whatever is configured."""
    from .discord import DiscordProvider
    from .telegram import TelegramProvider
    from .webhook import SlackProvider, WebhookProvider

    manager = NotificationManager({
        "webhook": WebhookProvider(timeout),
        "discord": DiscordProvider(timeout),
        "slack": SlackProvider(slack_webhook_url, timeout),
    })
    if telegram_bot_token:
        manager.register("telegram", TelegramProvider(telegram_bot_token, timeout))
    return manager
