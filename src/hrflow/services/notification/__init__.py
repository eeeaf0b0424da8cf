"""Notification service module."""

from hrflow.services.notification.schemas import (
    DeliveryRecord,
    Notification,
    NotificationChannel,
    NotificationKind,
    NotificationStatus,
)
from hrflow.services.notification.service import (
    NotificationService,
    Notifier,
    get_notification_service,
    reset_notification_service,
)

__all__ = [
    # Schemas
    "Notification",
    "NotificationKind",
    "NotificationChannel",
    "NotificationStatus",
    "DeliveryRecord",
    # Service
    "Notifier",
    "NotificationService",
    "get_notification_service",
    "reset_notification_service",
]
