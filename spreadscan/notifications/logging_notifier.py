from __future__ import annotations

from spreadscan.core.models import Alert
from spreadscan.notifications.gateway import NotificationGateway, format_alert
from spreadscan.utils.logging import get_logger


logger = get_logger("notifications")


class LoggingNotifier(NotificationGateway):
    """Writes alerts to the log. Default channel when no chat bot is configured."""

    def __init__(self) -> None:
        self.delivered = 0

    async def deliver(self, alert: Alert) -> None:
        logger.info("Alert for user %s\n%s", alert.user_id, format_alert(alert))
        self.delivered += 1
