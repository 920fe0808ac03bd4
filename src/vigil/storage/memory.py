"""Process-local alert store."""

from typing import Dict, List, Optional

from ..config.logging import get_logger
from ..exceptions import PersistenceError
from ..models.alert import Alert, AlertStatus, NotificationOutcome, TriggerRecord

logger = get_logger(__name__)


class InMemoryAlertStore:
    """Dictionary-backed store; hands out copies so callers never share state."""

    def __init__(self, alerts: Optional[List[Alert]] = None):
        self._alerts: Dict[str, Alert] = {}
        self.logger = logger.bind(store="memory")
        for alert in alerts or []:
            self.add(alert)

    def __len__(self) -> int:
        return len(self._alerts)

    def add(self, alert: Alert) -> Alert:
        self._alerts[alert.id] = alert.model_copy(deep=True)
        return alert

    def get(self, alert_id: str) -> Optional[Alert]:
        alert = self._alerts.get(alert_id)
        return alert.model_copy(deep=True) if alert else None

    def remove(self, alert_id: str) -> bool:
        return self._alerts.pop(alert_id, None) is not None

    def _require(self, operation: str, alert_id: str) -> Alert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise PersistenceError(operation, alert_id, "alert not found")
        return alert

    async def load_active(self, symbol: Optional[str] = None) -> List[Alert]:
        return [
            alert.model_copy(deep=True)
            for alert in self._alerts.values()
            if alert.status == AlertStatus.ACTIVE
            and alert.enabled
            and (symbol is None or alert.symbol == symbol)
        ]

    async def persist_trigger(self, alert_id: str, record: TriggerRecord) -> None:
        alert = self._require("persist_trigger", alert_id)
        alert.trigger_history.append(record.model_copy(deep=True))

    async def persist_status(
        self, alert_id: str, status: AlertStatus, enabled: bool
    ) -> None:
        alert = self._require("persist_status", alert_id)
        alert.status = status
        alert.enabled = enabled

    async def persist_notifications(
        self, alert_id: str, outcomes: List[NotificationOutcome]
    ) -> None:
        alert = self._require("persist_notifications", alert_id)
        if not alert.trigger_history:
            raise PersistenceError("persist_notifications", alert_id, "no trigger recorded")
        alert.trigger_history[-1].notifications = [o.model_copy() for o in outcomes]
