"""
Base repository: session handling and database error mapping.

Repositories flush so constraint violations surface inside the call that
caused them, and never commit or roll back; transaction boundaries belong to
the services.
"""

from contextlib import contextmanager
from typing import Any, Generic, NoReturn, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import DuplicateTokenError, ErrorCode, RepositoryError
from ..utils.logger import get_logger

T = TypeVar("T")

# PostgreSQL unique_violation
UNIQUE_VIOLATION_SQLSTATE = "23505"


def is_unique_violation(error: IntegrityError) -> bool:
    """True for unique / primary key collisions on SQLite and PostgreSQL."""
    orig = getattr(error, "orig", None)
    if getattr(orig, "sqlstate", None) == UNIQUE_VIOLATION_SQLSTATE:
        return True
    text = str(orig if orig is not None else error).lower()
    return "unique constraint" in text or "duplicate key" in text


class BaseRepository(Generic[T]):
    """Holds the session and model class; subclasses add the queries."""

    def __init__(self, session: Session, entity_class: Type[T], logger=None):
        self.session = session
        self.entity_class = entity_class
        self.entity_name = entity_class.__name__
        self.logger = logger or get_logger()

    def _handle_db_error(
        self,
        e: Exception,
        operation_name: str,
        entity_id: Optional[Any] = None,
        **context: Any,
    ) -> NoReturn:
        """
        Re-raise ``e`` as a repository error.

        Raises:
            DuplicateTokenError: Unique index collision (token value or one-active key)
            RepositoryError: Any other constraint, database or unexpected failure
        """
        if isinstance(e, RepositoryError):
            raise e

        error_context = {"operation_name": operation_name, "entity_name": self.entity_name, **context}
        if entity_id is not None:
            error_context["record_id"] = entity_id

        if isinstance(e, IntegrityError):
            if is_unique_violation(e):
                # Expected under concurrency; callers retry or return the winner
                self.logger.debug(f"Unique collision in {operation_name}", extra=error_context)
                raise DuplicateTokenError(
                    f"Duplicate {self.entity_name} in {operation_name}", cause=e, **error_context
                ) from e
            error_code = ErrorCode.CONSTRAINT_VIOLATION
        elif isinstance(e, SQLAlchemyError):
            error_code = ErrorCode.DATABASE_ERROR
        else:
            error_code = ErrorCode.INTERNAL_ERROR

        raise RepositoryError(
            f"{operation_name} failed for {self.entity_name}: {e}",
            error_code=error_code,
            cause=e,
            **error_context,
        ) from e

    @contextmanager
    def _session_operation(
        self, operation_name: str, entity_id: Optional[Any] = None, is_read_only: bool = False
    ):
        """Yield the session, flush unless read-only, and map any failure."""
        try:
            yield self.session
            if not is_read_only:
                self.session.flush()
        except Exception as e:
            self._handle_db_error(e, operation_name, entity_id)

    def _get_by_id(self, entity_id: Any, for_update: bool = False) -> Optional[T]:
        query = select(self.entity_class).where(self.entity_class.id == entity_id)
        if for_update:
            query = query.with_for_update()
        return self.session.execute(query).scalar_one_or_none()
