"""
Notifier
========
Delivers failure reports to a feedback channel.

    post(channel, message) -> True on delivery, False otherwise

WebhookNotifier posts {"channel", "text"} JSON to an incoming-webhook URL
(Slack / Mattermost / Teams-compatible payload). LogNotifier is used when no
webhook is configured; the report still ends up in the service log.

Delivery failures are returned as False, never raised: the caller decides
what to record.
"""
import asyncio
import logging
from typing import Protocol

import httpx

from mergegate.core.config import (
    NOTIFY_MAX_ATTEMPTS,
    NOTIFY_TIMEOUT_SECONDS,
    NOTIFY_WEBHOOK_URL,
)

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def post(self, channel: str, message: str) -> bool:
        ...


class WebhookNotifier:
    """
    Incoming-webhook delivery with bounded retries.

    4xx responses are permanent (bad URL, revoked hook) and are not retried.
    5xx responses and transport errors are retried with a linear backoff.
    """

    def __init__(
        self,
        webhook_url: str,
        timeout_seconds: float = NOTIFY_TIMEOUT_SECONDS,
        max_attempts: int = NOTIFY_MAX_ATTEMPTS,
        backoff_seconds: float = 2.0,
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.headers = {
            "Content-Type": "application/json",
            "User-Agent": "mergegate-notifier",
        }

    async def post(self, channel: str, message: str) -> bool:
        payload = {"channel": channel, "text": message}

        async with httpx.AsyncClient(headers=self.headers, timeout=self.timeout_seconds) as client:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    response = await client.post(self.webhook_url, json=payload)
                    response.raise_for_status()
                    logger.info("Notification delivered to %s (attempt %d)", channel, attempt)
                    return True
                except httpx.HTTPStatusError as http_err:
                    status_code = http_err.response.status_code
                    if 400 <= status_code < 500:
                        logger.error("Notification rejected — HTTP %d: %s", status_code, http_err)
                        return False
                    logger.error(
                        "Notification server error (HTTP %d), attempt %d/%d",
                        status_code, attempt, self.max_attempts,
                    )
                except httpx.HTTPError as e:
                    logger.error(
                        "Notification transport error, attempt %d/%d: %s",
                        attempt, self.max_attempts, e,
                    )

                if attempt < self.max_attempts:
                    await asyncio.sleep(self.backoff_seconds * attempt)

        logger.error("Notification to %s not delivered after %d attempts", channel, self.max_attempts)
        return False


class LogNotifier:
    """Fallback channel: writes the report to the service log."""

    async def post(self, channel: str, message: str) -> bool:
        logger.warning("[%s] %s", channel, message)
        return True


def build_notifier(webhook_url: str = NOTIFY_WEBHOOK_URL) -> Notifier:
    if webhook_url:
        return WebhookNotifier(webhook_url)
    logger.info("NOTIFY_WEBHOOK_URL not set, failure reports go to the log only")
    return LogNotifier()
