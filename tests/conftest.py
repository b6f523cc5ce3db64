"""
PyTest configuration and shared fixtures for the dbpulse test suite.

No live database is needed: a scripted MetricsSource and static probes stand
in for the monitored server.
"""
import os

os.environ.setdefault("LOG_FILE_ENABLED", "false")

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pytest

from dbpulse.core.config import MonitoringConfig, ThresholdConfig
from dbpulse.database.source import MetricsSource, PoolStats
from dbpulse.monitoring.models import (
    ConnectionMetrics, MetricSnapshot, PerformanceMetrics, StorageMetrics
)
from dbpulse.monitoring.probes import MetricProbe


BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeMetricsSource(MetricsSource):
    """
    Scripted data source.

    ``responses`` maps a SQL fragment to the rows returned for any statement
    containing it; ``failures`` maps a fragment to the exception raised.
    """

    def __init__(
        self,
        pool: Optional[PoolStats] = None,
        responses: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        failures: Optional[Dict[str, Exception]] = None
    ):
        self.pool = pool or PoolStats()
        self.responses = responses or {}
        self.failures = failures or {}
        self.executed: List[str] = []
        self.closed = False

    async def pool_stats(self) -> PoolStats:
        return self.pool

    async def fetch_all(
        self, sql: str, params: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        for fragment, error in self.failures.items():
            if fragment in sql:
                raise error
        for fragment, rows in self.responses.items():
            if fragment in sql:
                if fragment == "SHOW GLOBAL STATUS" and params:
                    wanted = set(params.values())
                    return [r for r in rows if r["Variable_name"] in wanted]
                return [dict(r) for r in rows]
        return []

    async def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> None:
        for fragment, error in self.failures.items():
            if fragment in sql:
                raise error
        self.executed.append(sql)

    async def close(self) -> None:
        self.closed = True


class StaticProbe(MetricProbe):
    """Returns scripted values in order, repeating the last one"""

    def __init__(self, name: str, values: Sequence[Any], default: Any = None):
        self.name = name
        self._values = list(values)
        self._default = default
        self.calls = 0

    def default(self) -> Any:
        return self._default

    async def collect(self) -> Any:
        value = self._values[min(self.calls, len(self._values) - 1)]
        self.calls += 1
        if isinstance(value, Exception):
            raise value
        return value


def status_rows(**counters) -> List[Dict[str, str]]:
    """SHOW GLOBAL STATUS rows"""
    return [{"Variable_name": name, "Value": str(value)} for name, value in counters.items()]


def make_snapshot(
    timestamp: datetime = BASE_TIME,
    utilization: float = 10.0,
    hit_rate: float = 100.0,
    lock_wait: float = 0.0,
    **kwargs
) -> MetricSnapshot:
    return MetricSnapshot(
        timestamp=timestamp,
        connections=ConnectionMetrics(active=1, idle=9, total=10, utilization=utilization),
        performance=PerformanceMetrics(buffer_pool_hit_rate=hit_rate, lock_wait_time=lock_wait),
        storage=kwargs.pop("storage", StorageMetrics()),
        **kwargs
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_source() -> FakeMetricsSource:
    return FakeMetricsSource(pool=PoolStats(active=2, idle=8, total=10, queued=0))


@pytest.fixture
def thresholds() -> ThresholdConfig:
    return ThresholdConfig()


@pytest.fixture
def monitoring_config() -> MonitoringConfig:
    """Short intervals so scheduler tests finish quickly"""
    return MonitoringConfig(
        collection_interval=1.0,
        retention_days=1.0,
        probe_timeout=0.5,
        shutdown_timeout=1.0,
        hourly_interval=3600.0,
        daily_interval=86400.0,
    )


def neutral_probes(utilizations: Sequence[float]) -> List[MetricProbe]:
    """Connection probe scripted with the given utilizations; everything else neutral"""
    return [
        StaticProbe(
            "connections",
            [ConnectionMetrics(active=int(u), idle=100 - int(u), total=100, utilization=u)
             for u in utilizations],
            default=ConnectionMetrics(),
        ),
        StaticProbe("performance", [PerformanceMetrics()], default=PerformanceMetrics()),
        StaticProbe("storage", [StorageMetrics()], default=StorageMetrics()),
        StaticProbe("replication", [None], default=None),
    ]
