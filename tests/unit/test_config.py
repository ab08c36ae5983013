"""Tests for centralized configuration module."""

import os
from unittest.mock import patch

import pytest

from token_guardian.config import (
    AppConfig,
    FeatureFlags,
    LoggingConfig,
    MaintenanceConfig,
    QueueConfig,
    RemoteAuthorityConfig,
    TokenConfig,
    get_config,
    reset_config,
    set_config,
)
from token_guardian.constants import TokenDefaults
from token_guardian.db.db_config import DatabaseConfig, get_production_config
from token_guardian.exceptions import ValidationError


class TestTokenConfig:
    """Test TokenConfig model."""

    def test_default_values(self):
        config = TokenConfig()
        assert config.hash_charset == TokenDefaults.HASH_CHARSET
        assert config.hash_length == 8
        assert config.checksum_length == 2
        assert config.expiration_days == 365
        assert config.rotation_month == 8
        assert config.rotation_enabled is True
        assert config.rotation_warning_days == 30
        assert config.cleanup_retention_days == 365
        assert config.max_generation_attempts == 100

    def test_from_env(self):
        env = {
            "GUARDIAN_TOKEN_HASH_LENGTH": "10",
            "GUARDIAN_TOKEN_EXPIRATION_DAYS": "180",
            "GUARDIAN_TOKEN_ROTATION_MONTH": "9",
            "GUARDIAN_TOKEN_RETENTION_DAYS": "30",
        }
        with patch.dict(os.environ, env):
            config = TokenConfig()
        assert config.hash_length == 10
        assert config.expiration_days == 180
        assert config.rotation_month == 9
        assert config.cleanup_retention_days == 30

    @pytest.mark.parametrize("charset", ["A", "AAB", "AB_C"])
    def test_invalid_charset(self, charset):
        with pytest.raises(ValueError):
            TokenConfig(hash_charset=charset)

    @pytest.mark.parametrize("month", [0, 13])
    def test_invalid_rotation_month(self, month):
        with pytest.raises(ValueError):
            TokenConfig(rotation_month=month)

    def test_positive_lengths_required(self):
        with pytest.raises(ValueError):
            TokenConfig(hash_length=0)
        with pytest.raises(ValueError):
            TokenConfig(max_generation_attempts=0)


class TestRemoteAuthorityConfig:
    """Test RemoteAuthorityConfig model."""

    def test_disabled_by_default(self):
        config = RemoteAuthorityConfig()
        assert config.enabled is False
        assert config.connect_timeout_seconds == 5
        assert config.read_timeout_seconds == 10
        assert config.health_check_timeout_seconds == 5
        assert config.verify_ssl is True

    def test_from_env(self):
        env = {
            "GUARDIAN_REMOTE_ENABLED": "true",
            "GUARDIAN_REMOTE_BASE_URL": "https://authority.example/",
            "GUARDIAN_REMOTE_API_KEY": "key",
            "GUARDIAN_REMOTE_READ_TIMEOUT": "3.5",
        }
        with patch.dict(os.environ, env):
            config = RemoteAuthorityConfig()
        assert config.enabled is True
        assert config.base_url == "https://authority.example"
        assert config.api_key == "key"
        assert config.read_timeout_seconds == 3.5

    def test_enabled_requires_base_url(self):
        with pytest.raises(ValueError):
            RemoteAuthorityConfig(enabled=True, base_url=None)


class TestOtherSections:
    """Test queue, logging, maintenance and feature flag sections."""

    def test_queue_config_from_env(self):
        with patch.dict(os.environ, {"AzureWebJobsStorage": "DefaultEndpointsProtocol=https;..."}):
            config = QueueConfig()
        assert config.connection_string == "DefaultEndpointsProtocol=https;..."
        assert config.logs_queue_name == "logs-queue"

    def test_logging_level_is_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_invalid_logging_level(self):
        with pytest.raises(ValueError):
            LoggingConfig(level="LOUD")

    def test_maintenance_defaults(self):
        config = MaintenanceConfig()
        assert config.expire_sweep_interval_seconds == 3600
        assert config.cleanup_interval_seconds == 86400
        assert config.rotation_interval_seconds == 86400

    def test_feature_flags_from_env(self):
        with patch.dict(os.environ, {"GUARDIAN_ENABLE_LOGS_QUEUE": "true"}):
            assert FeatureFlags().enable_logs_queue is True
        assert FeatureFlags().enable_logs_queue is False


class TestAppConfig:
    """Test AppConfig and the global accessors."""

    def test_sections_are_built(self):
        config = AppConfig()
        assert isinstance(config.token, TokenConfig)
        assert isinstance(config.remote, RemoteAuthorityConfig)
        assert isinstance(config.maintenance, MaintenanceConfig)

    def test_custom_values(self):
        config = AppConfig()
        config.set_custom("district", "springfield")
        assert config.get_custom("district") == "springfield"
        assert config.get_custom("missing", "default") == "default"

    def test_global_config_lifecycle(self):
        first = get_config()
        assert get_config() is first

        custom = AppConfig(environment="test")
        set_config(custom)
        assert get_config() is custom

        reset_config()
        assert get_config() is not custom


class TestDatabaseConfig:
    """Test DatabaseConfig connection strings."""

    def test_sqlite_connection_string(self):
        config = DatabaseConfig(db_type="sqlite", database=":memory:")
        assert config.get_connection_string() == "sqlite:///:memory:"
        assert config.is_sqlite

    def test_postgres_connection_string(self):
        config = DatabaseConfig(
            host="db", database="tokens", username="guardian", password="pw"
        )
        assert (
            config.get_connection_string() == "postgresql+psycopg://guardian:pw@db:5432/tokens"
        )
        assert not config.is_sqlite

    def test_postgres_requires_credentials(self):
        with pytest.raises(ValidationError):
            DatabaseConfig(host="db", database="tokens").get_connection_string()

    def test_database_url_wins(self):
        with patch.dict(os.environ, {"DATABASE_URL": "sqlite:///tokens.db"}):
            config = get_production_config()
        assert config.get_connection_string() == "sqlite:///tokens.db"
        assert config.is_sqlite

    def test_repr_masks_password(self):
        config = DatabaseConfig(host="db", username="guardian", password="hunter2")
        assert "hunter2" not in repr(config)
