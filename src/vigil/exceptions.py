"""Exception classes for the Vigil monitoring core."""

from typing import Any, Dict, Optional


class VigilError(Exception):
    """Base exception for the Vigil application."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MarketDataUnavailableError(VigilError):
    """Market data could not be fetched and no cached copy exists."""

    def __init__(self, symbol: str, reason: str):
        super().__init__(
            message=f"Market data for {symbol} unavailable: {reason}",
            details={"symbol": symbol, "reason": reason},
        )
        self.symbol = symbol
        self.reason = reason


class PersistenceError(VigilError):
    """A write to the alert store failed."""

    def __init__(self, operation: str, alert_id: str, reason: str):
        super().__init__(
            message=f"Persistence {operation} failed for alert {alert_id}: {reason}",
            details={"operation": operation, "alert_id": alert_id},
        )
        self.operation = operation
        self.alert_id = alert_id


class NotificationError(VigilError):
    """A notification channel could not deliver a message."""

    def __init__(self, channel: str, reason: str):
        super().__init__(
            message=f"Notification via {channel} failed: {reason}",
            details={"channel": channel},
        )
        self.channel = channel


class InvalidAlertError(VigilError):
    """A stored alert record could not be turned into a valid alert."""

    def __init__(self, alert_id: str, reason: str):
        super().__init__(
            message=f"Alert {alert_id} is invalid: {reason}",
            details={"alert_id": alert_id},
        )
        self.alert_id = alert_id
