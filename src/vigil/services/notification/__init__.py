"""Notification channels and dispatch."""

from ...models.notification import (
    AlertContext,
    NotificationChannel,
    NotificationResult,
    NotificationTarget,
)
from .channels import (
    HttpNotificationChannel,
    LineNotificationChannel,
    NotificationChannelProtocol,
    TelegramNotificationChannel,
    WebhookNotificationChannel,
    format_alert_message,
)
from .service import NotificationDispatcher

__all__ = [
    "AlertContext",
    "HttpNotificationChannel",
    "LineNotificationChannel",
    "NotificationChannel",
    "NotificationChannelProtocol",
    "NotificationDispatcher",
    "NotificationResult",
    "NotificationTarget",
    "TelegramNotificationChannel",
    "WebhookNotificationChannel",
    "format_alert_message",
]
