"""Notification channel implementations."""

from abc import ABC, abstractmethod
from typing import Optional, Protocol

import httpx

from ...config.logging import get_logger
from ...models.notification import AlertContext, NotificationChannel, NotificationResult
from ...utils.clock import utc_now

logger = get_logger(__name__)

LINE_PUSH_URL = "https://api.line.me/v2/bot/message/push"
TELEGRAM_API_URL = "https://api.telegram.org"

_VARIANT_LABELS = {
    "price_above": "Price above",
    "price_below": "Price below",
    "percent_change": "24h change",
    "volume_spike": "Volume spike",
}


class NotificationChannelProtocol(Protocol):
    """Protocol for notification channel implementations."""

    channel: NotificationChannel

    async def send_notification(
        self, context: AlertContext, recipient: str
    ) -> NotificationResult:
        """Send notification through this channel."""
        ...


def format_alert_message(context: AlertContext) -> str:
    """
    Render an alert context as a plain-text message.

    Args:
        context: Fired alert description

    Returns:
        Message text shared by the text-based channels
    """
    label = _VARIANT_LABELS.get(
        context.variant, context.variant.replace("_", " ").capitalize()
    )
    change = context.price_change_percent or 0.0
    direction = "📈" if change >= 0 else "📉"

    message = f"🚨 {context.symbol} alert: {label}\n\n"
    message += f"💵 Price: {context.price:,.8g}\n"
    message += f"{direction} 24h change: {change:+.2f}%\n"

    observed = {k: v for k, v in context.observed.items() if k != "price"}
    if observed:
        message += "📊 " + ", ".join(f"{k}={v:.4g}" for k, v in observed.items()) + "\n"
    if context.thresholds:
        message += "🎯 " + ", ".join(f"{k}={v}" for k, v in context.thresholds.items()) + "\n"

    message += f"\n🕐 {context.triggered_at.strftime('%Y-%m-%d %H:%M:%S')} UTC"
    if context.max_triggers > 1:
        message += f"\n🔁 Trigger {context.trigger_count}/{context.max_triggers}"
    if context.note:
        message += f"\n📝 {context.note}"
    return message


class HttpNotificationChannel(ABC):
    """Shared delivery bookkeeping for channels that talk HTTP."""

    channel: NotificationChannel

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self._client = client
        self._timeout = timeout
        self.logger = logger.bind(channel=self.channel.value)

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, **kwargs)

    @abstractmethod
    async def _deliver(self, context: AlertContext, recipient: str) -> Optional[str]:
        """Deliver the message; return a message id if the transport gives one."""

    async def send_notification(
        self, context: AlertContext, recipient: str
    ) -> NotificationResult:
        """
        Send alert notification.

        Args:
            context: Fired alert description
            recipient: Channel-specific destination

        Returns:
            NotificationResult with delivery status
        """
        start_time = utc_now()

        try:
            message_id = await self._deliver(context, recipient)
            delivery_time = (utc_now() - start_time).total_seconds() * 1000

            self.logger.info(
                "Notification sent successfully",
                symbol=context.symbol,
                alert_id=context.alert_id,
                variant=context.variant,
                delivery_time_ms=delivery_time,
            )

            return NotificationResult(
                channel=self.channel,
                success=True,
                message_id=message_id,
                error=None,
                delivery_time_ms=delivery_time,
            )

        except Exception as e:
            delivery_time = (utc_now() - start_time).total_seconds() * 1000

            self.logger.warning(
                "Failed to send notification",
                symbol=context.symbol,
                alert_id=context.alert_id,
                error=str(e),
            )

            return NotificationResult(
                channel=self.channel,
                success=False,
                message_id=None,
                error=str(e),
                delivery_time_ms=delivery_time,
            )


class LineNotificationChannel(HttpNotificationChannel):
    """LINE Messaging API push channel."""

    channel = NotificationChannel.LINE

    def __init__(
        self,
        access_token: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        super().__init__(client, timeout)
        self._access_token = access_token

    async def _deliver(self, context: AlertContext, recipient: str) -> Optional[str]:
        if not self._access_token:
            raise RuntimeError("LINE channel access token not configured")

        response = await self._post(
            LINE_PUSH_URL,
            headers={"Authorization": f"Bearer {self._access_token}"},
            json={
                "to": recipient,
                "messages": [{"type": "text", "text": format_alert_message(context)}],
            },
        )
        if response.status_code != 200:
            raise RuntimeError(f"LINE API HTTP {response.status_code}: {response.text[:200]}")
        return response.headers.get("X-Line-Request-Id")


class TelegramNotificationChannel(HttpNotificationChannel):
    """Telegram bot channel."""

    channel = NotificationChannel.TELEGRAM

    def __init__(
        self,
        bot_token: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        super().__init__(client, timeout)
        self._bot_token = bot_token

    async def _deliver(self, context: AlertContext, recipient: str) -> Optional[str]:
        if not self._bot_token:
            raise RuntimeError("Telegram bot token not configured")

        response = await self._post(
            f"{TELEGRAM_API_URL}/bot{self._bot_token}/sendMessage",
            json={"chat_id": recipient, "text": format_alert_message(context)},
        )
        payload = response.json()
        if response.status_code != 200 or not payload.get("ok"):
            raise RuntimeError(
                f"Telegram API error: {payload.get('description', response.status_code)}"
            )
        message_id = payload.get("result", {}).get("message_id")
        return str(message_id) if message_id is not None else None


class WebhookNotificationChannel(HttpNotificationChannel):
    """Posts the alert context as JSON to a user-supplied URL."""

    channel = NotificationChannel.WEBHOOK

    async def _deliver(self, context: AlertContext, recipient: str) -> Optional[str]:
        response = await self._post(
            recipient,
            json={"event": "alert.triggered", "alert": context.to_dict()},
        )
        if response.status_code >= 400:
            raise RuntimeError(f"Webhook HTTP {response.status_code}")
        return None
