"""Discord webhook provider — recipient is the webhook URL."""

from __future__ import annotations

import httpx

from .templates import RenderedMessage

# Discord rejects message content over this length
MAX_CONTENT = 2000


class DiscordProvider:
    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    def deliver(self, recipient: str, message: RenderedMessage) -> None:
        content = message.text
        if len(content) > MAX_CONTENT:
            content = content[: MAX_CONTENT - 3] + "..."
        with httpx.Client(timeout=self.timeout) as client:
            resp = client.post(recipient, json={"content": content})
            resp.raise_for_status()
