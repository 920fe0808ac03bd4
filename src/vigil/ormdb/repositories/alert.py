"""Repository for persisted alerts."""

from typing import Any, Dict, List, Optional

from ..models import AlertRecord
from .base import BaseRepository


class AlertRepository(BaseRepository):
    """Repository for alert rows."""

    def add_alert(self, **fields: Any) -> AlertRecord:
        """Insert a new alert row."""
        record = AlertRecord(**fields)
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def get_alert(self, alert_id: str) -> Optional[AlertRecord]:
        return self.session.get(AlertRecord, alert_id)

    def get_active_alerts(self, symbol: Optional[str] = None) -> List[AlertRecord]:
        """Get enabled alerts in active status, optionally for one symbol."""
        query = self.session.query(AlertRecord).filter(
            AlertRecord.status == "active",
            AlertRecord.enabled.is_(True),
        )
        if symbol is not None:
            query = query.filter(AlertRecord.symbol == symbol.upper())
        return query.order_by(AlertRecord.created_at).all()

    def append_trigger(self, alert_id: str, trigger: Dict[str, Any]) -> bool:
        """Append a trigger record to an alert's history."""
        record = self.get_alert(alert_id)
        if record is None:
            return False

        # Reassign so the JSON column is flagged dirty
        record.trigger_history = list(record.trigger_history or []) + [trigger]
        self.session.commit()
        return True

    def update_status(self, alert_id: str, status: str, enabled: bool) -> bool:
        record = self.get_alert(alert_id)
        if record is None:
            return False

        record.status = status
        record.enabled = enabled
        self.session.commit()
        return True

    def set_latest_notifications(
        self, alert_id: str, notifications: List[Dict[str, Any]]
    ) -> bool:
        """Replace the notification outcomes of the most recent trigger."""
        record = self.get_alert(alert_id)
        if record is None or not record.trigger_history:
            return False

        history = [dict(entry) for entry in record.trigger_history]
        history[-1]["notifications"] = notifications
        record.trigger_history = history
        self.session.commit()
        return True

    def delete_alert(self, alert_id: str) -> bool:
        record = self.get_alert(alert_id)
        if record is None:
            return False

        self.session.delete(record)
        self.session.commit()
        return True
