"""Alert store interface consumed by the monitoring core."""

from typing import List, Optional, Protocol

from ..models.alert import Alert, AlertStatus, NotificationOutcome, TriggerRecord


class AlertStore(Protocol):
    """
    Persistence for alerts.

    Reads must reflect writes made earlier by the same process, so a tick
    always sees the trigger state the previous tick of its symbol wrote.
    Implementations signal write failures by raising.
    """

    async def load_active(self, symbol: Optional[str] = None) -> List[Alert]:
        """Alerts in ``active`` status with ``enabled`` set, optionally for one symbol."""
        ...

    async def persist_trigger(self, alert_id: str, record: TriggerRecord) -> None:
        """Append a trigger record to the alert's history."""
        ...

    async def persist_status(
        self, alert_id: str, status: AlertStatus, enabled: bool
    ) -> None:
        """Store the alert's lifecycle status and enabled flag."""
        ...

    async def persist_notifications(
        self, alert_id: str, outcomes: List[NotificationOutcome]
    ) -> None:
        """Store delivery outcomes against the alert's most recent trigger."""
        ...
