"""Base repository class with common functionality."""

from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from ..database import get_session_factory


class BaseRepository:
    """Base repository class providing common session management."""

    def __init__(
        self,
        session: Optional[Session] = None,
        session_factory: Optional[sessionmaker] = None,
    ):
        self._external_session = session is not None
        if session is None:
            session = (session_factory or get_session_factory())()
        self.session = session

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            self.session.rollback()
        if not self._external_session:
            self.session.close()
