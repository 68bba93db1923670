"""Notification utilities for critical errors."""

import logging
import os
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class NotificationService:
    """Handles sending notifications for critical errors."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        """
        Initialize notification service.

        Args:
            http_client: Optional HTTP client used to post to the webhook
        """
        self.notification_enabled = os.getenv("ENABLE_NOTIFICATIONS", "false").lower() == "true"
        self.notification_webhook = os.getenv("NOTIFICATION_WEBHOOK_URL")
        self.http_client = http_client

    async def send_critical_error_notification(
        self,
        note_id: Optional[str],
        error_message: str,
        context: Optional[dict] = None
    ) -> bool:
        """
        Send notification for critical errors.

        The message is always logged; when NOTIFICATION_WEBHOOK_URL is set it
        is also posted there as JSON. Delivery failures are logged, never raised.

        Args:
            note_id: The Simplenote note ID involved, if any
            error_message: The error message
            context: Optional additional context

        Returns:
            True if the notification was delivered to the webhook
        """
        if not self.notification_enabled:
            logger.info(f"Notifications disabled, skipping notification for note {note_id}")
            return False

        notification_message = (
            f"Critical Error in Simplenote sync\n"
            f"Note ID: {note_id}\n"
            f"Error: {error_message}\n"
        )

        if context:
            notification_message += f"Context: {context}\n"

        logger.warning(f"CRITICAL ERROR NOTIFICATION: {notification_message}")

        if not self.notification_webhook:
            return False

        payload = {
            "text": notification_message,
            "note_id": note_id,
            "error": error_message,
            "context": context or {}
        }

        try:
            if self.http_client is not None:
                response = await self.http_client.post(self.notification_webhook, json=payload)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    response = await client.post(self.notification_webhook, json=payload)
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to deliver notification to webhook: {e}")
            return False
