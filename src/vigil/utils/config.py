"""Startup helpers shared by the API and headless entry points."""

from pathlib import Path
from typing import Optional

from ..config.logging import get_logger, setup_logging
from ..config.settings import Settings, get_settings, validate_required_settings


def prepare_storage(settings: Settings) -> None:
    """Create the data directory and the alert tables."""
    from ..ormdb.database import create_tables

    Path(settings.data_directory).mkdir(parents=True, exist_ok=True)
    create_tables()


def initialize_application(settings: Optional[Settings] = None) -> Settings:
    """
    Configure logging and storage for the running process.

    Returns:
        The settings the application was initialized with
    """
    settings = settings or get_settings()
    setup_logging(
        level=settings.log_level,
        format_type=settings.log_format,
        file_enabled=settings.log_file_enabled,
        file_path=settings.log_file_path,
        max_file_size=settings.log_max_file_size,
        backup_count=settings.log_backup_count,
    )
    prepare_storage(settings)

    get_logger(__name__).info(
        "Application initialized",
        environment=settings.environment,
        data_dir=settings.data_directory,
    )
    return settings


def validate_environment() -> bool:
    """True when the configuration loads cleanly."""
    return validate_required_settings()
