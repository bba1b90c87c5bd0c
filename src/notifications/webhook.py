"""Generic JSON webhook and Slack incoming-webhook providers."""

from __future__ import annotations

import logging

import httpx

from .templates import RenderedMessage

logger = logging.getLogger(__name__)


class WebhookProvider:
    """POSTs the structured payload to the recipient URL."""

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    def deliver(self, recipient: str, message: RenderedMessage) -> None:
        with httpx.Client(timeout=self.timeout) as client:
            resp = client.post(
                recipient,
                json={"subject": message.subject, "text": message.text, **message.payload},
            )
            resp.raise_for_status()


class SlackProvider:
    """POSTs to a Slack incoming webhook.

    The recipient is the webhook URL; when a target leaves it blank the
    workspace-wide ``default_webhook`` is used.
    """

    def __init__(self, default_webhook: str = "", timeout: float = 10.0) -> None:
        self.default_webhook = default_webhook
        self.timeout = timeout

    def deliver(self, recipient: str, message: RenderedMessage) -> None:
        url = recipient if recipient.startswith("http") else self.default_webhook
        if not url:
            raise ValueError("No Slack webhook configured")
        with httpx.Client(timeout=self.timeout) as client:
            resp = client.post(url, json={"text": message.text, "mrkdwn": True})
            if resp.status_code != 200:
                logger.warning("Slack webhook returned %d: %s", resp.status_code, resp.text[:200])
            resp.raise_for_status()
