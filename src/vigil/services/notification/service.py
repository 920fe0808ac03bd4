"""Notification dispatch across channels."""

import asyncio
from typing import Dict, List, Optional, Sequence

from ...config.logging import get_logger
from ...config.settings import Settings
from ...models.notification import (
    AlertContext,
    NotificationChannel,
    NotificationResult,
    NotificationTarget,
)
from .channels import (
    LineNotificationChannel,
    NotificationChannelProtocol,
    TelegramNotificationChannel,
    WebhookNotificationChannel,
)

logger = get_logger(__name__)


class NotificationDispatcher:
    """Sends alert contexts to their targets, one bounded attempt per target."""

    def __init__(
        self,
        channels: Optional[Dict[NotificationChannel, NotificationChannelProtocol]] = None,
        timeout_seconds: float = 10.0,
    ):
        self.logger = logger.bind(service="notification_dispatcher")
        self.channels: Dict[NotificationChannel, NotificationChannelProtocol] = dict(
            channels or {}
        )
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationDispatcher":
        """Build a dispatcher with every channel the settings configure."""
        channels = {
            NotificationChannel.WEBHOOK: WebhookNotificationChannel(
                timeout=settings.webhook_timeout_seconds
            ),
        }
        if settings.line_channel_access_token:
            channels[NotificationChannel.LINE] = LineNotificationChannel(
                settings.line_channel_access_token,
                timeout=settings.notification_timeout_seconds,
            )
        if settings.telegram_bot_token:
            channels[NotificationChannel.TELEGRAM] = TelegramNotificationChannel(
                settings.telegram_bot_token,
                timeout=settings.notification_timeout_seconds,
            )
        return cls(channels, timeout_seconds=settings.notification_timeout_seconds)

    def add_notification_channel(
        self,
        channel_type: NotificationChannel,
        implementation: NotificationChannelProtocol,
    ):
        """
        Add or replace a notification channel implementation.

        Args:
            channel_type: Type of notification channel
            implementation: Channel implementation
        """
        self.channels[channel_type] = implementation

        self.logger.info(
            "Notification channel added",
            channel_type=channel_type.value,
            implementation=type(implementation).__name__,
        )

    def _failed(self, channel: NotificationChannel, error: str) -> NotificationResult:
        return NotificationResult(
            channel=channel,
            success=False,
            message_id=None,
            error=error,
            delivery_time_ms=0,
        )

    async def send(
        self, target: NotificationTarget, context: AlertContext
    ) -> NotificationResult:
        """
        Send one alert context to one target.

        Never raises: a missing channel, a timeout or a channel exception is
        reported as a failed result. No retry happens here.

        Args:
            target: Channel and destination
            context: Fired alert description

        Returns:
            NotificationResult for this target
        """
        channel_impl = self.channels.get(target.channel)
        if channel_impl is None:
            return self._failed(
                target.channel, f"Channel {target.channel.value} not available"
            )

        try:
            return await asyncio.wait_for(
                channel_impl.send_notification(context, target.destination),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self.logger.warning(
                "Notification timed out",
                channel=target.channel.value,
                alert_id=context.alert_id,
                timeout_seconds=self.timeout_seconds,
            )
            return self._failed(
                target.channel, f"timed out after {self.timeout_seconds}s"
            )
        except Exception as e:
            self.logger.error(
                "Channel delivery raised exception",
                channel=target.channel.value,
                alert_id=context.alert_id,
                error=str(e),
                exc_info=True,
            )
            return self._failed(target.channel, str(e))

    async def send_all(
        self, targets: Sequence[NotificationTarget], context: AlertContext
    ) -> List[NotificationResult]:
        """Send to every target concurrently; results keep the targets' order."""
        if not targets:
            return []

        results = list(
            await asyncio.gather(*(self.send(target, context) for target in targets))
        )

        successful = sum(1 for r in results if r.success)
        self.logger.info(
            "Alert delivery completed",
            symbol=context.symbol,
            alert_id=context.alert_id,
            successful_deliveries=successful,
            total_attempts=len(results),
        )
        return results
