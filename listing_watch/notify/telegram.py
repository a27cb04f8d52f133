"""Telegram Bot API integration for new-item notifications."""

import logging
from typing import Optional, Protocol

import httpx

from listing_watch.config import settings
from listing_watch.errors import NotificationError

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


class Notifier(Protocol):
    """Delivers a formatted message to a recipient."""

    async def send(self, recipient_id: str, message: str) -> None:
        ...


class TelegramNotifier:
    """Telegram bot client for sending item notifications."""

    def __init__(
        self,
        bot_token: Optional[str] = None,
        api_url: str = TELEGRAM_API_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.bot_token = bot_token or settings.telegram_bot_token
        self.api_url = api_url.rstrip("/")
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0, transport=self._transport)
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def send(self, recipient_id: str, message: str) -> None:
        """
        Send a Markdown message to a chat.

        Args:
            recipient_id: Telegram chat ID
            message: Markdown formatted message

        Raises:
            NotificationError: If Telegram rejected or did not receive the message
        """
        client = await self._get_client()
        payload = {
            "chat_id": recipient_id,
            "text": message,
            "parse_mode": "Markdown",
            "disable_web_page_preview": False,
        }

        try:
            response = await client.post(
                f"{self.api_url}/bot{self.bot_token}/sendMessage",
                json=payload,
            )
        except httpx.HTTPError as e:
            raise NotificationError(f"Telegram request failed: {e}") from e

        if not response.is_success:
            raise NotificationError(
                f"Telegram returned HTTP {response.status_code}: {response.text[:200]}"
            )

        data = response.json()
        if not data.get("ok", False):
            raise NotificationError(f"Telegram rejected message: {data.get('description')}")

        logger.debug(f"Sent Telegram message to {recipient_id}")
