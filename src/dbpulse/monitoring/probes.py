"""
Metric probes
Independent read-only samplers, one per metric category.

A probe never raises past ``sample()``: on failure or timeout it hands back
its category's neutral value together with the error, and the collector
assembles the snapshot once every probe has settled.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Sequence, Tuple, TypeVar

import psutil

from dbpulse.core.logging import LoggerMixin, get_logger
from dbpulse.database.rows import as_float, as_int, column_value
from dbpulse.database.source import MetricsSource
from dbpulse.monitoring.errors import ProbeError
from dbpulse.monitoring.models import (
    ConnectionMetrics, DiskIOMetrics, MetricSnapshot, PerformanceMetrics,
    QueryMetrics, ReplicationMetrics, ReplicationState, StorageMetrics
)


logger = get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProbeResult(Generic[T]):
    """Outcome of one probe: a value (possibly the neutral default) and an optional error"""
    name: str
    value: T
    error: Optional[ProbeError] = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CollectionResult:
    """A snapshot plus the probe errors encountered while building it"""
    snapshot: MetricSnapshot
    errors: List[ProbeError] = field(default_factory=list)


async def global_status(source: MetricsSource, names: Iterable[str]) -> Dict[str, str]:
    """Read server status counters into a name -> value mapping"""
    names = list(names)
    placeholders = ", ".join(f":v{i}" for i in range(len(names)))
    params = {f"v{i}": name for i, name in enumerate(names)}
    rows = await source.fetch_all(
        f"SHOW GLOBAL STATUS WHERE Variable_name IN ({placeholders})", params
    )
    return {
        str(column_value(row, "Variable_name")): str(column_value(row, "Value"))
        for row in rows
    }


class MetricProbe(LoggerMixin, Generic[T]):
    """Base class for a single-category sampler"""

    name: str = "probe"

    def default(self) -> Optional[T]:
        """Neutral value used when sampling fails"""
        raise NotImplementedError

    async def collect(self) -> Optional[T]:
        raise NotImplementedError

    async def sample(self, timeout: Optional[float] = None) -> ProbeResult:
        started = time.perf_counter()
        try:
            if timeout is not None:
                value = await asyncio.wait_for(self.collect(), timeout=timeout)
            else:
                value = await self.collect()
            return ProbeResult(self.name, value, None, time.perf_counter() - started)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = ProbeError(self.name, e)
            self.logger.debug(f"Probe {self.name} failed, using neutral defaults: {e!r}")
            return ProbeResult(self.name, self.default(), error, time.perf_counter() - started)


class ConnectionProbe(MetricProbe[ConnectionMetrics]):
    """Connection pool state"""

    name = "connections"

    def __init__(self, source: MetricsSource):
        self.source = source

    def default(self) -> ConnectionMetrics:
        return ConnectionMetrics()

    async def collect(self) -> ConnectionMetrics:
        stats = await self.source.pool_stats()
        utilization = (stats.active / stats.total) * 100 if stats.total > 0 else 0.0
        return ConnectionMetrics(
            active=max(stats.active, 0),
            idle=max(stats.idle, 0),
            total=max(stats.total, 0),
            utilization=max(utilization, 0.0),
            queue_length=max(stats.queued, 0),
        )


class QueryProbe(MetricProbe[QueryMetrics]):
    """
    Query throughput and latency.

    Throughput is the rate of ``Questions`` since the previous sample; the
    first sample falls back to the lifetime average over server uptime.
    """

    name = "queries"

    STATUS_VARIABLES = ("Questions", "Slow_queries", "Uptime")

    AVERAGE_LATENCY_SQL = """
        SELECT SUM(SUM_TIMER_WAIT) / NULLIF(SUM(COUNT_STAR), 0) / 1000000000 AS avg_ms
        FROM performance_schema.events_statements_summary_by_digest
    """

    def __init__(self, source: MetricsSource):
        self.source = source
        self._last_questions: Optional[int] = None
        self._last_sampled: Optional[float] = None

    def default(self) -> QueryMetrics:
        return QueryMetrics()

    async def collect(self) -> QueryMetrics:
        status = await global_status(self.source, self.STATUS_VARIABLES)
        uptime = max(as_int(status.get("Uptime", "1")), 1)
        total_queries = as_int(status.get("Questions", "0"))
        slow_queries = as_int(status.get("Slow_queries", "0"))

        now = time.monotonic()
        if (
            self._last_questions is not None
            and self._last_sampled is not None
            and now > self._last_sampled
            and total_queries >= self._last_questions
        ):
            qps = (total_queries - self._last_questions) / (now - self._last_sampled)
        else:
            qps = total_queries / uptime
        self._last_questions = total_queries
        self._last_sampled = now

        return QueryMetrics(
            slow_queries=slow_queries,
            total_queries=total_queries,
            average_query_time=await self._average_latency(),
            queries_per_second=max(qps, 0.0),
        )

    async def _average_latency(self) -> float:
        try:
            row = await self.source.fetch_one(self.AVERAGE_LATENCY_SQL)
        except Exception as e:
            self.logger.debug(f"Statement digest statistics unavailable: {e!r}")
            return 0.0
        return as_float(column_value(row, "avg_ms")) if row else 0.0


class PerformanceProbe(MetricProbe[PerformanceMetrics]):
    """Engine counters combined with host CPU and disk latency"""

    name = "performance"

    STATUS_VARIABLES = (
        "Innodb_buffer_pool_read_requests", "Innodb_buffer_pool_reads",
        "Innodb_row_lock_waits", "Innodb_row_lock_time",
        "Innodb_data_reads", "Innodb_data_writes",
    )

    MEMORY_ESTIMATE_SQL = """
        SELECT (@@innodb_buffer_pool_size + @@key_buffer_size + @@tmp_table_size
                + @@max_connections * @@thread_stack) / (1024 * 1024 * 1024) AS estimated_memory_gb
    """

    def __init__(self, source: MetricsSource):
        self.source = source

    def default(self) -> PerformanceMetrics:
        return PerformanceMetrics()

    async def collect(self) -> PerformanceMetrics:
        status = await global_status(self.source, self.STATUS_VARIABLES)

        read_requests = as_int(status.get("Innodb_buffer_pool_read_requests", "0"))
        disk_reads = as_int(status.get("Innodb_buffer_pool_reads", "0"))
        if read_requests > 0:
            hit_rate = (read_requests - min(disk_reads, read_requests)) / read_requests * 100
        else:
            hit_rate = 100.0

        lock_waits = as_int(status.get("Innodb_row_lock_waits", "0"))
        lock_time_ms = as_int(status.get("Innodb_row_lock_time", "0"))
        lock_wait_seconds = (lock_time_ms / lock_waits) / 1000 if lock_waits > 0 else 0.0

        read_latency, write_latency = self._host_disk_latency()

        return PerformanceMetrics(
            cpu_usage=self._cpu_usage(),
            memory_usage=await self._memory_estimate(),
            disk_io=DiskIOMetrics(
                reads=as_int(status.get("Innodb_data_reads", "0")),
                writes=as_int(status.get("Innodb_data_writes", "0")),
                read_latency=read_latency,
                write_latency=write_latency,
            ),
            buffer_pool_hit_rate=hit_rate,
            lock_wait_time=lock_wait_seconds,
        )

    def _cpu_usage(self) -> float:
        # Non-blocking: compares against the previous call
        return as_float(psutil.cpu_percent(interval=None))

    def _host_disk_latency(self) -> Tuple[float, float]:
        try:
            counters = psutil.disk_io_counters()
        except (OSError, RuntimeError):
            return 0.0, 0.0
        if counters is None:
            return 0.0, 0.0
        read_latency = counters.read_time / counters.read_count if counters.read_count else 0.0
        write_latency = counters.write_time / counters.write_count if counters.write_count else 0.0
        return as_float(read_latency), as_float(write_latency)

    async def _memory_estimate(self) -> float:
        try:
            row = await self.source.fetch_one(self.MEMORY_ESTIMATE_SQL)
        except Exception as e:
            self.logger.debug(f"Memory estimate unavailable: {e!r}")
            return 0.0
        return as_float(column_value(row, "estimated_memory_gb")) if row else 0.0


class StorageProbe(MetricProbe[StorageMetrics]):
    """Storage footprint of the current schema"""

    name = "storage"

    STORAGE_SQL = """
        SELECT
            ROUND(SUM(data_length), 0) AS data_size,
            ROUND(SUM(index_length), 0) AS index_size,
            ROUND(SUM(data_length + index_length), 0) AS total_size,
            ROUND(SUM(data_free), 0) AS free_space,
            COUNT(*) AS table_count
        FROM information_schema.tables
        WHERE table_schema = DATABASE()
    """

    def __init__(self, source: MetricsSource):
        self.source = source

    def default(self) -> StorageMetrics:
        return StorageMetrics()

    async def collect(self) -> StorageMetrics:
        row = await self.source.fetch_one(self.STORAGE_SQL)
        if not row:
            return StorageMetrics()
        return StorageMetrics(
            data_size=as_int(column_value(row, "data_size")),
            index_size=as_int(column_value(row, "index_size")),
            total_size=as_int(column_value(row, "total_size")),
            free_space=as_int(column_value(row, "free_space")),
            table_count=as_int(column_value(row, "table_count")),
        )


class ReplicationProbe(MetricProbe[Optional[ReplicationMetrics]]):
    """Replica lag and thread state; None on a primary"""

    name = "replication"

    def __init__(self, source: MetricsSource):
        self.source = source

    def default(self) -> Optional[ReplicationMetrics]:
        return None

    async def collect(self) -> Optional[ReplicationMetrics]:
        row = await self.source.fetch_one("SHOW SLAVE STATUS")
        if not row:
            return None

        sql_running = str(column_value(row, "Slave_SQL_Running") or "").lower() == "yes"
        io_running = str(column_value(row, "Slave_IO_Running") or "").lower() == "yes"
        if sql_running and io_running:
            state = ReplicationState.RUNNING
        elif not sql_running and not io_running:
            state = ReplicationState.STOPPED
        else:
            state = ReplicationState.ERROR

        return ReplicationMetrics(
            lag=as_float(column_value(row, "Seconds_Behind_Master")),
            status=state,
            sql_thread_running=sql_running,
            io_thread_running=io_running,
        )


def default_probes(source: MetricsSource) -> List[MetricProbe]:
    """The five standard probes, in snapshot field order"""
    return [
        ConnectionProbe(source),
        QueryProbe(source),
        PerformanceProbe(source),
        StorageProbe(source),
        ReplicationProbe(source),
    ]


_SNAPSHOT_FIELDS = frozenset({"connections", "queries", "performance", "storage", "replication"})


async def collect_snapshot(
    probes: Sequence[MetricProbe],
    timeout: Optional[float] = None,
    clock: Clock = utcnow
) -> CollectionResult:
    """
    Run every probe concurrently and assemble one snapshot.

    Waits for all probes to settle; a failing or timed-out probe contributes
    its neutral default and never cancels its siblings.
    """
    results: List[ProbeResult] = await asyncio.gather(
        *(probe.sample(timeout) for probe in probes)
    )

    values: Dict[str, Any] = {}
    errors: List[ProbeError] = []
    for result in results:
        if result.name not in _SNAPSHOT_FIELDS:
            logger.warning(f"Ignoring result from unknown probe: {result.name}")
            continue
        if result.error is not None:
            errors.append(result.error)
        if result.value is not None:
            values[result.name] = result.value

    snapshot = MetricSnapshot(timestamp=clock(), **values)
    return CollectionResult(snapshot=snapshot, errors=errors)
