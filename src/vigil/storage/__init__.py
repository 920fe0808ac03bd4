"""Alert store implementations."""

from .base import AlertStore
from .memory import InMemoryAlertStore
from .sql import SqlAlchemyAlertStore, alert_to_row, row_to_alert

__all__ = [
    "AlertStore",
    "InMemoryAlertStore",
    "SqlAlchemyAlertStore",
    "alert_to_row",
    "row_to_alert",
]
