from __future__ import annotations

from typing import Optional

import httpx

from spreadscan.config import constants
from spreadscan.core.models import Alert
from spreadscan.notifications.gateway import NotificationGateway, format_alert
from spreadscan.utils.logging import get_logger
from spreadscan.utils.retry import retry_decorator


logger = get_logger("notifications.telegram")


class TelegramNotifier(NotificationGateway):
    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        client: Optional[httpx.AsyncClient] = None,
        api_url: str = constants.TELEGRAM_API_URL,
    ):
        self.chat_id = chat_id
        self._url = f"{api_url.rstrip('/')}/bot{bot_token}/sendMessage"
        self._client = client or httpx.AsyncClient(timeout=15)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @retry_decorator(max_retries=3, initial_delay=1.0, exceptions=(httpx.TransportError, httpx.HTTPStatusError))
    async def deliver(self, alert: Alert) -> None:
        response = await self._client.post(
            self._url,
            json={
                "chat_id": self.chat_id,
                "text": format_alert(alert),
                "disable_web_page_preview": True,
            },
        )
        response.raise_for_status()
        logger.debug("Delivered alert %s to chat %s", alert.alert_id, self.chat_id)
