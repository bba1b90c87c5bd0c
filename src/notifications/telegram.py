"""Telegram Bot API provider — recipient is the chat id."""

from __future__ import annotations

import logging

import httpx

from .templates import RenderedMessage

logger = logging.getLogger(__name__)

# Telegram API base
TELEGRAM_API = "https://api.telegram.org/bot{token}"


class TelegramProvider:
    def __init__(self, bot_token: str, timeout: float = 10.0) -> None:
        if not bot_token:
            raise ValueError("Telegram bot token is required")
        self.bot_token = bot_token
        self.timeout = timeout

    def deliver(self, recipient: str, message: RenderedMessage) -> None:
        url = f"{TELEGRAM_API.format(token=self.bot_token)}/sendMessage"
        with httpx.Client(timeout=self.timeout) as client:
            resp = client.post(
                url,
                json={
                    "chat_id": recipient,
                    "text": message.text,
                    "parse_mode": "Markdown",
                },
            )
            if resp.status_code != 200:
                logger.warning("Telegram API returned %d: %s", resp.status_code, resp.text[:200])
            resp.raise_for_status()
