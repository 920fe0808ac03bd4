"""Alert store backed by the SQLAlchemy ORM."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from ..config.logging import get_logger, log_integrity_issue
from ..exceptions import InvalidAlertError, PersistenceError
from ..models.alert import Alert, AlertStatus, NotificationOutcome, TriggerRecord
from ..ormdb.database import get_session_factory
from ..ormdb.models import AlertRecord
from ..ormdb.repositories import AlertRepository
from ..utils.clock import as_utc

logger = get_logger(__name__)


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def alert_to_row(alert: Alert) -> Dict[str, Any]:
    """Column values for an alert."""
    data = alert.model_dump(mode="json")
    return {
        "id": alert.id,
        "user_id": alert.user_id,
        "symbol": alert.symbol,
        "variant": alert.variant.value,
        "status": alert.status.value,
        "enabled": alert.enabled,
        "params": data["params"],
        "indicator": data["indicator"],
        "policy": data["policy"],
        "targets": data["targets"],
        "trigger_history": data["trigger_history"],
        "note": alert.note,
        "expires_at": _as_naive_utc(alert.expires_at),
        "created_at": _as_naive_utc(alert.created_at),
    }


def row_to_alert(record: AlertRecord) -> Alert:
    """
    Build an alert from its row.

    Raises:
        InvalidAlertError: the row does not describe a valid alert
    """
    try:
        return Alert(
            id=record.id,
            user_id=record.user_id,
            symbol=record.symbol,
            variant=record.variant,
            status=record.status,
            enabled=record.enabled,
            params=record.params,
            indicator=record.indicator,
            policy=record.policy or {},
            targets=record.targets or [],
            trigger_history=record.trigger_history or [],
            note=record.note,
            expires_at=as_utc(record.expires_at),
            created_at=as_utc(record.created_at),
        )
    except ValidationError as e:
        raise InvalidAlertError(record.id, str(e)) from e


class SqlAlchemyAlertStore:
    """
    Alert store over a SQLAlchemy session factory.

    The ORM is synchronous, so every call runs in a worker thread to keep
    database I/O off the event loop.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or get_session_factory()
        self.logger = logger.bind(store="sqlalchemy")

    def _repository(self) -> AlertRepository:
        return AlertRepository(session_factory=self._session_factory)

    def save(self, alert: Alert) -> None:
        """Insert or replace an alert row."""
        with self._repository() as repo:
            existing = repo.get_alert(alert.id)
            if existing is not None:
                repo.session.delete(existing)
                repo.session.flush()
            repo.add_alert(**alert_to_row(alert))

    def _load_active(self, symbol: Optional[str]) -> List[Alert]:
        alerts = []
        with self._repository() as repo:
            for record in repo.get_active_alerts(symbol):
                try:
                    alerts.append(row_to_alert(record))
                except InvalidAlertError as e:
                    # Skip the row; it must not stop the rest of the symbol
                    log_integrity_issue(
                        self.logger,
                        "Skipping invalid alert row",
                        alert_id=record.id,
                        variant=record.variant,
                        error=e.message,
                    )
        return alerts

    async def load_active(self, symbol: Optional[str] = None) -> List[Alert]:
        return await asyncio.to_thread(self._load_active, symbol)

    def _persist_trigger(self, alert_id: str, record: TriggerRecord) -> None:
        with self._repository() as repo:
            if not repo.append_trigger(alert_id, record.model_dump(mode="json")):
                raise PersistenceError("persist_trigger", alert_id, "alert not found")

    async def persist_trigger(self, alert_id: str, record: TriggerRecord) -> None:
        await asyncio.to_thread(self._persist_trigger, alert_id, record)

    def _persist_status(self, alert_id: str, status: AlertStatus, enabled: bool) -> None:
        with self._repository() as repo:
            if not repo.update_status(alert_id, status.value, enabled):
                raise PersistenceError("persist_status", alert_id, "alert not found")

    async def persist_status(
        self, alert_id: str, status: AlertStatus, enabled: bool
    ) -> None:
        await asyncio.to_thread(self._persist_status, alert_id, status, enabled)

    def _persist_notifications(
        self, alert_id: str, outcomes: List[NotificationOutcome]
    ) -> None:
        payload = [outcome.model_dump(mode="json") for outcome in outcomes]
        with self._repository() as repo:
            if not repo.set_latest_notifications(alert_id, payload):
                raise PersistenceError(
                    "persist_notifications", alert_id, "alert or trigger not found"
                )

    async def persist_notifications(
        self, alert_id: str, outcomes: List[NotificationOutcome]
    ) -> None:
        await asyncio.to_thread(self._persist_notifications, alert_id, outcomes)
