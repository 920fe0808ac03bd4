"""SQLAlchemy persistence for alerts."""

from .database import (
    Base,
    check_database_health,
    create_engine_for_url,
    create_session_factory,
    create_tables,
    get_engine,
    get_session_factory,
)
from .models import AlertRecord
from .repositories import AlertRepository, BaseRepository

__all__ = [
    "Base",
    "check_database_health",
    "create_engine_for_url",
    "create_session_factory",
    "create_tables",
    "get_engine",
    "get_session_factory",
    "AlertRecord",
    "AlertRepository",
    "BaseRepository",
]
