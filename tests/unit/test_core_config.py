"""
Unit tests for core configuration module.

Tests environment loading, validation and retention window derivation.
"""
import os
from datetime import timedelta
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from dbpulse.core.config import (
    MonitoringConfig, NotificationConfig, RetentionWindow, Settings, ThresholdConfig
)


class TestSettings:
    """Test cases for Settings class."""

    def test_default_settings(self):
        settings = Settings(_env_file=None)

        assert settings.APP_NAME == "dbpulse"
        assert settings.DB_MONITORING_INTERVAL == 60.0
        assert settings.DB_METRICS_RETENTION_DAYS == 7.0
        assert settings.THRESHOLD_CONNECTION_UTILIZATION == 85.0
        assert settings.THRESHOLD_BUFFER_POOL_HIT_RATE == 95.0

    def test_settings_from_env(self):
        with patch.dict(os.environ, {
            'DB_MONITORING_INTERVAL': '15',
            'THRESHOLD_DISK_USAGE': '70',
            'LOG_LEVEL': 'debug',
            'DATABASE_URL': 'mysql+aiomysql://monitor:secret@db/app',
        }):
            settings = Settings(_env_file=None)

            assert settings.DB_MONITORING_INTERVAL == 15.0
            assert settings.THRESHOLD_DISK_USAGE == 70.0
            assert settings.LOG_LEVEL == "DEBUG"
            assert settings.DATABASE_URL == "mysql+aiomysql://monitor:secret@db/app"

    def test_blank_database_url_is_none(self):
        settings = Settings(_env_file=None, DATABASE_URL="   ")
        assert settings.DATABASE_URL is None


class TestThresholdConfig:
    """Test cases for threshold validation."""

    def test_percentages_must_be_in_range(self):
        with pytest.raises(ValidationError):
            ThresholdConfig(connection_utilization=120)
        with pytest.raises(ValidationError):
            ThresholdConfig(disk_usage=-1)

    def test_durations_must_not_be_negative(self):
        with pytest.raises(ValidationError):
            ThresholdConfig(replication_lag_seconds=-5)


class TestMonitoringConfig:
    """Test cases for MonitoringConfig."""

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValidationError):
            MonitoringConfig(collection_interval=0)

    def test_rejects_zero_slow_query_limit(self):
        with pytest.raises(ValidationError):
            MonitoringConfig(slow_query_limit=0)

    def test_from_settings(self):
        source = Settings(
            _env_file=None,
            DB_MONITORING_INTERVAL=30,
            DB_ALERTING_ENABLED=False,
            THRESHOLD_CONNECTION_UTILIZATION=70,
            DB_WEBHOOK_ENABLED=True,
            DB_WEBHOOK_URL="https://hooks.example.com/db",
        )
        config = MonitoringConfig.from_settings(source)

        assert config.collection_interval == 30.0
        assert config.alerting_enabled is False
        assert config.thresholds.connection_utilization == 70.0
        assert config.notifications.webhook_enabled is True
        assert config.notifications.webhook_url == "https://hooks.example.com/db"


class TestRetentionWindow:
    """Test cases for retention derivation."""

    def test_default_window_holds_a_week_of_minutes(self):
        window = RetentionWindow(collection_interval=60, retention_days=7)

        assert window.max_snapshot_count == 10080
        assert window.max_age == timedelta(days=7)

    def test_count_is_at_least_one(self):
        window = RetentionWindow(collection_interval=86400 * 30, retention_days=1)
        assert window.max_snapshot_count == 1


class TestNotificationConfig:
    """Test cases for webhook headers."""

    def test_bearer_token_header(self):
        config = NotificationConfig(webhook_token="abc123", headers={"X-Team": "dba"})
        headers = config.build_headers()

        assert headers["Authorization"] == "Bearer abc123"
        assert headers["Content-Type"] == "application/json"
        assert headers["X-Team"] == "dba"

    def test_no_token_no_authorization(self):
        assert "Authorization" not in NotificationConfig().build_headers()
