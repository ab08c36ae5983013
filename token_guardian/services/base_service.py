"""
Session handling shared by the token services.

Services own transaction boundaries: repositories flush, services commit or
roll back. Time comes from an injectable clock so expiry and retention can be
exercised without patching.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..db.db_base import utc_now
from ..utils.logger import get_logger

Clock = Callable[[], datetime]


class SessionManagedService:
    """
    Service bound to one database session.

    A caller-provided session stays open after ``close()``; a session taken
    from the global DatabaseManager is closed with the service.
    """

    def __init__(
        self,
        session: Optional[Session] = None,
        logger=None,
        clock: Optional[Clock] = None,
    ):
        """
        Args:
            session: Session to work on; a fresh one from the global manager if None
            logger: Logger; the package logger if None
            clock: Returns the current aware UTC time
        """
        self._owns_session = session is None
        self.session = session if session is not None else self._new_session()
        self.logger = logger or get_logger()
        self.clock: Clock = clock or utc_now

    @staticmethod
    def _new_session() -> Session:
        from ..db.db_config import get_db_manager

        return get_db_manager().new_session()

    def now(self) -> datetime:
        return self.clock()

    @contextmanager
    def transaction(self):
        """
        Commit the block's writes, or roll them back and re-raise.

            with service.transaction():
                token.revoke(service.now())
                service.repository.save(token)
        """
        try:
            yield self.session
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def commit(self):
        self.session.commit()

    def rollback(self):
        self.session.rollback()

    def close(self):
        if self._owns_session:
            self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            self.rollback()
        self.close()
