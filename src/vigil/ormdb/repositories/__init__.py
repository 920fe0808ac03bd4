"""Repository classes for database operations."""

from .alert import AlertRepository
from .base import BaseRepository

__all__ = [
    "AlertRepository",
    "BaseRepository",
]
