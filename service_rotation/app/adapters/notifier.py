"""
Notification delivery.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

import httpx

from shared.errors import NotificationError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, retry_on_exception


def is_transient(exc: Exception) -> bool:
    """Server errors, throttling and transport failures may succeed on retry."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status == 429
    return True


class Notifier(ABC):
    @abstractmethod
    async def send(self, subject: str, body: str) -> None:
        """Deliver one message. Raises ``NotificationError`` on failure."""

    async def close(self) -> None:
        """Release transport resources."""


class WebhookNotifier(Notifier):
    """Posts ``{"subject", "message"}`` JSON to a webhook (chat, SNS bridge, mailer)."""

    def __init__(self, webhook_url: str, http_client: Optional[httpx.AsyncClient] = None,
                 timeout: float = 10.0):
        self.webhook_url = webhook_url
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self.logger = get_logger("rotation.notifier")

    async def close(self) -> None:
        await self._client.aclose()

    @retry_on_exception((httpx.HTTPError,), config=RetryConfig(max_attempts=3, base_delay=0.5),
                        retry_if=is_transient)
    async def _post(self, subject: str, body: str) -> None:
        response = await self._client.post(self.webhook_url, json={"subject": subject, "message": body})
        response.raise_for_status()

    async def send(self, subject: str, body: str) -> None:
        try:
            await self._post(subject, body)
        except RetryError as exc:
            raise NotificationError(details={"error": str(exc.last_exception)}) from exc
        self.logger.info("Notification sent", subject=subject)


class InMemoryNotifier(Notifier):
    """Records messages instead of sending them."""

    def __init__(self):
        self.messages: List[Tuple[str, str]] = []

    async def send(self, subject: str, body: str) -> None:
        self.messages.append((subject, body))

    def subjects(self) -> List[str]:
        return [subject for subject, _ in self.messages]
