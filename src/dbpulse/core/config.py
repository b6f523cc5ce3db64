"""
dbpulse Core Configuration
Environment-driven settings and the construction-time monitoring configuration.
"""

from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SECONDS_PER_DAY = 86400


class Settings(BaseSettings):
    """
    dbpulse Configuration Settings
    """

    # Application
    APP_NAME: str = "dbpulse"
    ENVIRONMENT: str = "development"
    SERVICE_NAME: str = "dbpulse"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Path = Path("logs")
    LOG_FILE_ENABLED: bool = True

    # Data source
    DATABASE_URL: Optional[str] = None
    DATABASE_POOL_SIZE: int = 10
    DATABASE_MAX_OVERFLOW: int = 5

    # Monitoring
    DB_MONITORING_ENABLED: bool = True
    DB_MONITORING_INTERVAL: float = 60.0  # seconds
    DB_ALERTING_ENABLED: bool = True
    DB_METRICS_RETENTION_DAYS: float = 7.0
    DB_PROBE_TIMEOUT: float = 10.0
    DB_SHUTDOWN_TIMEOUT: float = 30.0
    DB_ENABLE_SLOW_QUERY_LOG: bool = False

    # Thresholds
    THRESHOLD_CONNECTION_UTILIZATION: float = 85.0  # percent
    THRESHOLD_SLOW_QUERY_MS: float = 1000.0
    THRESHOLD_LOCK_WAIT_SECONDS: float = 10.0
    THRESHOLD_BUFFER_POOL_HIT_RATE: float = 95.0  # percent
    THRESHOLD_DISK_USAGE: float = 85.0  # percent
    THRESHOLD_REPLICATION_LAG_SECONDS: float = 60.0

    # Notifications
    DB_WEBHOOK_ENABLED: bool = False
    DB_WEBHOOK_URL: str = ""
    DB_WEBHOOK_TOKEN: str = ""
    DB_WEBHOOK_TIMEOUT: float = 10.0

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def assemble_db_connection(cls, v: Optional[str]) -> Optional[str]:
        if isinstance(v, str) and v.strip():
            return v.strip()
        return None

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> str:
        return str(v).upper()

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class ThresholdConfig(BaseModel):
    """Per-category alert thresholds"""
    connection_utilization: float = 85.0  # percent
    slow_query_ms: float = 1000.0
    lock_wait_seconds: float = 10.0
    buffer_pool_hit_rate: float = 95.0  # percent
    disk_usage: float = 85.0  # percent
    replication_lag_seconds: float = 60.0

    @field_validator("connection_utilization", "buffer_pool_hit_rate", "disk_usage")
    @classmethod
    def validate_percent(cls, v: float) -> float:
        if not 0.0 <= v <= 100.0:
            raise ValueError("percentage thresholds must be between 0 and 100")
        return v

    @field_validator("slow_query_ms", "lock_wait_seconds", "replication_lag_seconds")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("thresholds must not be negative")
        return v


class NotificationConfig(BaseModel):
    """Outbound alert notification target"""
    webhook_enabled: bool = False
    webhook_url: str = ""
    webhook_token: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: float = 10.0

    def build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", **self.headers}
        if self.webhook_token:
            headers["Authorization"] = f"Bearer {self.webhook_token}"
        return headers


@dataclass(frozen=True)
class RetentionWindow:
    """How much snapshot history is kept in memory"""
    collection_interval: float
    retention_days: float

    @property
    def max_age(self) -> timedelta:
        return timedelta(days=self.retention_days)

    @property
    def max_snapshot_count(self) -> int:
        return max(1, int(self.retention_days * SECONDS_PER_DAY / self.collection_interval))


class MonitoringConfig(BaseModel):
    """
    Construction-time configuration for a DatabaseMonitor.

    Built explicitly (tests, embedding applications) or from the
    environment through ``from_settings``.
    """
    enabled: bool = True
    collection_interval: float = 60.0  # seconds
    alerting_enabled: bool = True
    retention_days: float = 7.0
    probe_timeout: float = 10.0
    shutdown_timeout: float = 30.0
    hourly_interval: float = 3600.0
    daily_interval: float = 86400.0
    slow_query_limit: int = 20
    enable_slow_query_log: bool = False
    service_name: str = "dbpulse"
    environment: str = "development"
    thresholds: ThresholdConfig = Field(default_factory=ThresholdConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)

    @field_validator(
        "collection_interval", "retention_days", "probe_timeout",
        "shutdown_timeout", "hourly_interval", "daily_interval"
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("intervals and timeouts must be positive")
        return v

    @field_validator("slow_query_limit")
    @classmethod
    def validate_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError("slow_query_limit must be at least 1")
        return v

    @property
    def retention(self) -> RetentionWindow:
        return RetentionWindow(
            collection_interval=self.collection_interval,
            retention_days=self.retention_days
        )

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "MonitoringConfig":
        """Build monitoring configuration from environment settings"""
        s = source or get_settings()
        return cls(
            enabled=s.DB_MONITORING_ENABLED,
            collection_interval=s.DB_MONITORING_INTERVAL,
            alerting_enabled=s.DB_ALERTING_ENABLED,
            retention_days=s.DB_METRICS_RETENTION_DAYS,
            probe_timeout=s.DB_PROBE_TIMEOUT,
            shutdown_timeout=s.DB_SHUTDOWN_TIMEOUT,
            enable_slow_query_log=s.DB_ENABLE_SLOW_QUERY_LOG,
            service_name=s.SERVICE_NAME,
            environment=s.ENVIRONMENT,
            thresholds=ThresholdConfig(
                connection_utilization=s.THRESHOLD_CONNECTION_UTILIZATION,
                slow_query_ms=s.THRESHOLD_SLOW_QUERY_MS,
                lock_wait_seconds=s.THRESHOLD_LOCK_WAIT_SECONDS,
                buffer_pool_hit_rate=s.THRESHOLD_BUFFER_POOL_HIT_RATE,
                disk_usage=s.THRESHOLD_DISK_USAGE,
                replication_lag_seconds=s.THRESHOLD_REPLICATION_LAG_SECONDS,
            ),
            notifications=NotificationConfig(
                webhook_enabled=s.DB_WEBHOOK_ENABLED,
                webhook_url=s.DB_WEBHOOK_URL,
                webhook_token=s.DB_WEBHOOK_TOKEN,
                timeout=s.DB_WEBHOOK_TIMEOUT,
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
