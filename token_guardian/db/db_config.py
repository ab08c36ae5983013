"""
Database configuration and session management for the token store.

SQLite backs development and tests, PostgreSQL (psycopg) backs production.
Both enforce the one-active-token rule through the same partial unique index.
"""

import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, scoped_session, sessionmaker

from ..constants import EnvironmentVariable
from ..exceptions import ErrorCode, ServiceError, ValidationError
from ..utils.logger import get_logger

Base: Any = declarative_base()

POSTGRES_DRIVER = "postgresql+psycopg"


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "false").lower() == "true"


class DatabaseConfig(BaseModel):
    """Connection settings; ``url`` overrides the individual fields."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    db_type: str = "postgres"
    database: str = ""
    host: Optional[str] = None
    port: str = "5432"
    username: Optional[str] = None
    password: Optional[str] = None
    url: Optional[str] = None
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    # Seconds a SQLite writer waits on a locked database file
    sqlite_busy_timeout: float = 15.0
    echo: bool = False
    development_mode: bool = False

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """PostgreSQL settings from DATABASE_URL or the DB_* variables."""
        return cls(
            db_type="postgres",
            url=os.environ.get(EnvironmentVariable.DATABASE_URL.value) or None,
            host=os.environ.get("DB_HOST", "localhost"),
            port=os.environ.get("DB_PORT", "5432"),
            database=os.environ.get("DB_NAME", "token_guardian"),
            username=os.environ.get("DB_USER", "postgres"),
            password=os.environ.get("DB_PASSWORD", ""),
            pool_size=int(os.environ.get("DB_POOL_SIZE", "5")),
            max_overflow=int(os.environ.get("DB_MAX_OVERFLOW", "10")),
            pool_timeout=int(os.environ.get("DB_POOL_TIMEOUT", "30")),
            echo=_env_flag("DB_ECHO"),
        )

    @property
    def is_sqlite(self) -> bool:
        if self.url:
            return self.url.startswith("sqlite")
        return self.db_type.lower() == "sqlite"

    def get_connection_string(self) -> str:
        if self.url:
            return self.url

        db_type = self.db_type.lower()
        if db_type == "sqlite":
            return f"sqlite:///{self.database}"
        if db_type != "postgres":
            raise ValidationError(
                f"Unsupported database type: {self.db_type}",
                error_code=ErrorCode.INVALID_FORMAT,
                field="db_type",
                value=self.db_type,
            )

        missing = [
            name
            for name in ("host", "database", "username", "password")
            if not getattr(self, name)
        ]
        if missing:
            raise ValidationError(
                "Missing required Postgres configuration parameters",
                error_code=ErrorCode.MISSING_REQUIRED,
                field="database_config",
                missing=missing,
            )
        return (
            f"{POSTGRES_DRIVER}://{self.username}:{self.password}@"
            f"{self.host}:{self.port}/{self.database}"
        )

    def engine_options(self) -> Dict[str, Any]:
        if self.is_sqlite:
            # Worker threads share the engine; each one holds its own session
            return {
                "connect_args": {
                    "check_same_thread": False,
                    "timeout": self.sqlite_busy_timeout,
                }
            }
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
            "pool_pre_ping": True,
        }

    def __repr__(self) -> str:
        return (
            f"DatabaseConfig(db_type='{self.db_type}', host='{self.host}', "
            f"port='{self.port}', database='{self.database}', "
            f"username='{self.username}', password='***')"
        )


class DatabaseManager:
    """
    Owns the engine and hands out sessions.

    ``new_session`` gives an independent session for request workers and
    maintenance jobs; ``get_session`` gives the thread-scoped one.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.engine: Engine = create_engine(
            config.get_connection_string(), echo=config.echo, **config.engine_options()
        )
        self.session_factory = sessionmaker(bind=self.engine)
        self.scoped_session = scoped_session(self.session_factory)

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        if not self.config.development_mode:
            raise ServiceError(
                "Cannot drop the token tables outside development mode",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation="drop_tables",
            )
        Base.metadata.drop_all(self.engine)

    def get_session(self) -> Session:
        return self.scoped_session()

    def new_session(self) -> Session:
        """Return an unscoped session the caller must close."""
        return self.session_factory()

    def close(self) -> None:
        self.scoped_session.remove()
        self.engine.dispose()


def get_development_config() -> DatabaseConfig:
    """SQLite settings for local runs; in-memory unless DEV_DB_PATH is set."""
    return DatabaseConfig(
        db_type="sqlite",
        database=os.environ.get("DEV_DB_PATH", ":memory:"),
        echo=_env_flag("DB_ECHO"),
        development_mode=True,
    )


def get_production_config() -> DatabaseConfig:
    return DatabaseConfig.from_env()


def import_all_models():
    """Register every model with the metadata before create_all or migrations."""
    from sqlalchemy.orm import configure_mappers

    from .db_token_models import GuardianToken  # noqa

    configure_mappers()


def init_db(db_manager: DatabaseManager) -> None:
    get_logger().info(
        "Creating token tables", extra={"sqlite": db_manager.config.is_sqlite}
    )
    import_all_models()
    db_manager.create_tables()


_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """
    Get the process-wide database manager.

    Raises:
        ServiceError: If initialize_db() or set_db_manager() has not been called
    """
    if _db_manager is None:
        raise ServiceError(
            "Database manager not initialized. Call initialize_db() first.",
            error_code=ErrorCode.CONFIGURATION_ERROR,
            operation="get_db_manager",
        )
    return _db_manager


def set_db_manager(manager: Optional[DatabaseManager]) -> None:
    global _db_manager
    _db_manager = manager


def initialize_db(config: Optional[DatabaseConfig] = None) -> DatabaseManager:
    """Create the global manager (production settings by default) and its tables."""
    global _db_manager
    _db_manager = DatabaseManager(config or get_production_config())
    init_db(_db_manager)
    return _db_manager


def close_db() -> None:
    global _db_manager
    if _db_manager is not None:
        _db_manager.close()
        _db_manager = None
