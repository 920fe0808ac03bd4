"""Database engine and session factory for the alert store."""

from typing import Any, Dict, Optional

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config.logging import get_logger
from ..config.settings import Settings, get_settings

logger = get_logger(__name__)

Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA foreign_keys=ON",
)


def _apply_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        for pragma in _SQLITE_PRAGMAS:
            cursor.execute(pragma)
    finally:
        cursor.close()


def create_engine_for_url(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine for the alert database.

    SQLite engines share one connection across the store's worker threads;
    file-backed SQLite databases also run in WAL mode.
    """
    is_sqlite = database_url.startswith("sqlite")
    kwargs: Dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_size"] = 5
        kwargs["max_overflow"] = 10

    engine = create_engine(database_url, **kwargs)
    if is_sqlite and ":memory:" not in database_url:
        event.listen(engine, "connect", _apply_sqlite_pragmas)
    return engine


def get_engine(settings: Optional[Settings] = None) -> Engine:
    """Process-wide engine built from settings on first use."""
    global _engine

    if _engine is None:
        settings = settings or get_settings()
        database_url = settings.get_database_url()
        _engine = create_engine_for_url(database_url, echo=settings.database_echo_sql)
        logger.info(
            "Database engine initialized",
            backend=_engine.url.get_backend_name(),
            echo_sql=settings.database_echo_sql,
        )
    return _engine


def create_session_factory(engine: Engine) -> sessionmaker:
    # Rows are read after commit when converted to alerts
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_session_factory() -> sessionmaker:
    """Process-wide session factory bound to ``get_engine()``."""
    global _session_factory

    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


def create_tables(engine: Optional[Engine] = None) -> None:
    """Create the alert tables if they do not exist."""
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
    logger.info("Alert tables ready")


def check_database_health(engine: Optional[Engine] = None) -> Dict[str, Any]:
    """
    Run a trivial query against the database.

    Returns:
        Health entry with ``status`` of ``healthy`` or ``unhealthy``
    """
    engine = engine or get_engine()
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        return {"status": "unhealthy", "connectivity": False, "error": str(e)}

    return {
        "status": "healthy",
        "connectivity": True,
        "database_url": engine.url.render_as_string(hide_password=True),
    }
