"""
Shared test fixtures.

This module provides database setup, a controllable clock, configuration
isolation and the token factory wiring used across unit and integration tests.
"""

import os
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session

from token_guardian.config import AppConfig, TokenConfig, reset_config, set_config
from token_guardian.db import DatabaseConfig, DatabaseManager, import_all_models, set_db_manager
from token_guardian.db.db_base import utc_now
from token_guardian.db.db_config import Base
from token_guardian.services.token_lifecycle_service import TokenLifecycleService
from token_guardian.services.token_resolution_service import TokenResolutionService
from token_guardian.utils.logger import reset_logging
from token_guardian.utils.token_codec import TokenCodec
from tests.fixtures.factories import GuardianTokenFactory


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now=None):
        self.now = now or utc_now()

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def isolated_config():
    """Fresh global config per test, with remote calls and log shipping off."""
    with patch.dict(
        os.environ,
        {
            "AzureWebJobsStorage": "",
            "GUARDIAN_REMOTE_ENABLED": "false",
            "GUARDIAN_ENABLE_LOGS_QUEUE": "false",
        },
        clear=False,
    ):
        reset_config()
        reset_logging()
        yield
        reset_config()
        reset_logging()


@pytest.fixture(scope="session")
def db_config() -> DatabaseConfig:
    """Create SQLite in-memory database configuration for testing."""
    return DatabaseConfig(
        db_type="sqlite",
        database=":memory:",
        echo=False,
        development_mode=True,
    )


@pytest.fixture(scope="session")
def db_manager(db_config: DatabaseConfig) -> DatabaseManager:
    """Create the database manager with all models registered."""
    import_all_models()
    manager = DatabaseManager(db_config)
    set_db_manager(manager)
    yield manager
    set_db_manager(None)
    manager.close()


@pytest.fixture(scope="function")
def db_session(db_manager: DatabaseManager) -> Session:
    """
    Create a database session for each test.

    Tables are created before and dropped after every test so each test
    starts from an empty store.
    """
    Base.metadata.create_all(db_manager.engine)
    session = db_manager.new_session()
    GuardianTokenFactory._meta.sqlalchemy_session = session

    yield session

    session.rollback()
    session.close()
    Base.metadata.drop_all(db_manager.engine)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def token_config() -> TokenConfig:
    return TokenConfig()


@pytest.fixture
def app_config(token_config) -> AppConfig:
    config = AppConfig(token=token_config)
    set_config(config)
    return config


@pytest.fixture
def codec(token_config) -> TokenCodec:
    return TokenCodec(token_config)


@pytest.fixture
def lifecycle_service(db_session, token_config, clock) -> TokenLifecycleService:
    return TokenLifecycleService(session=db_session, config=token_config, clock=clock)


@pytest.fixture
def resolution_service(db_session, token_config, clock) -> TokenResolutionService:
    return TokenResolutionService(session=db_session, config=token_config, clock=clock)
