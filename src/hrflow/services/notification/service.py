"""Notification service for workflow events."""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone

import httpx

from hrflow.core.config import get_settings
from hrflow.services.notification.schemas import (
    DeliveryRecord,
    Notification,
    NotificationChannel,
    NotificationStatus,
)

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Port used by the workflow engine to notify users."""

    @abstractmethod
    async def notify(self, notification: Notification) -> None:
        """Deliver (or enqueue) one notification."""


class NotificationService(Notifier):
    """Delivers notifications to the log and, if configured, a webhook.

    Features:
    - Outbox of every notification handed to the service
    - Optional webhook delivery over httpx
    - Delivery tracking per channel
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        webhook_token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize notification service.

        Args:
            webhook_url: Endpoint receiving JSON notifications
            webhook_token: Bearer token for the webhook
            http_client: Client to reuse (created lazily otherwise)
        """
        self._webhook_url = webhook_url
        self._webhook_token = webhook_token
        self._http_client = http_client
        self._outbox: list[Notification] = []
        self._records: list[DeliveryRecord] = []

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    async def notify(self, notification: Notification) -> None:
        self._outbox.append(notification)
        self._send_log(notification)
        self._records.append(self._record(notification, NotificationChannel.LOG))

        if self._webhook_url:
            self._records.append(await self._send_webhook(notification))

    def _send_log(self, notification: Notification) -> None:
        logger.info(
            f"[NOTIFY] {notification.kind.value} -> {notification.recipient_user_id}: "
            f"{notification.subject}",
            extra={"request_id": notification.related_request_id},
        )

    async def _send_webhook(self, notification: Notification) -> DeliveryRecord:
        headers = {}
        if self._webhook_token:
            headers["Authorization"] = f"Bearer {self._webhook_token}"

        try:
            client = await self._get_http_client()
            response = await client.post(
                self._webhook_url,
                json=notification.model_dump(mode="json"),
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(
                f"Webhook delivery failed for {notification.related_request_id}: {e}"
            )
            return self._record(
                notification,
                NotificationChannel.WEBHOOK,
                NotificationStatus.FAILED,
                error=str(e),
            )
        return self._record(notification, NotificationChannel.WEBHOOK)

    @staticmethod
    def _record(
        notification: Notification,
        channel: NotificationChannel,
        status: NotificationStatus = NotificationStatus.SENT,
        error: str | None = None,
    ) -> DeliveryRecord:
        return DeliveryRecord(
            record_id=f"NTF-{uuid.uuid4().hex[:8].upper()}",
            notification=notification,
            channel=channel,
            status=status,
            sent_at=datetime.now(timezone.utc),
            error=error,
        )

    def get_outbox(
        self,
        recipient_user_id: str | None = None,
        request_id: str | None = None,
    ) -> list[Notification]:
        """Notifications handed to the service, oldest first.

        Args:
            recipient_user_id: Filter by recipient
            request_id: Filter by related request

        Returns:
            Matching notifications
        """
        results = self._outbox
        if recipient_user_id:
            results = [n for n in results if n.recipient_user_id == recipient_user_id]
        if request_id:
            results = [n for n in results if n.related_request_id == request_id]
        return list(results)

    def get_delivery_records(
        self,
        channel: NotificationChannel | None = None,
        status: NotificationStatus | None = None,
        limit: int = 100,
    ) -> list[DeliveryRecord]:
        records = self._records
        if channel:
            records = [r for r in records if r.channel == channel]
        if status:
            records = [r for r in records if r.status == status]
        return records[-limit:]

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


# Singleton instance
_notification_service: NotificationService | None = None


def get_notification_service() -> NotificationService:
    """Get or create notification service singleton."""
    global _notification_service
    if _notification_service is None:
        settings = get_settings()
        _notification_service = NotificationService(
            webhook_url=settings.notification_webhook_url,
            webhook_token=settings.notification_webhook_token,
        )
    return _notification_service


def reset_notification_service() -> None:
    """Reset the singleton (for testing)."""
    global _notification_service
    _notification_service = None
