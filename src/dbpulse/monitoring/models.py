"""
Monitoring data model
Metric snapshots, alerts and health reports
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class AlertSeverity(str, Enum):
    """Alert severity levels"""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AlertCategory(str, Enum):
    """What part of the data store an alert concerns"""
    CONNECTION = "connection"
    QUERY = "query"
    STORAGE = "storage"
    REPLICATION = "replication"
    RESOURCE = "resource"


class ReplicationState(str, Enum):
    """Replica thread state"""
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class HealthStatus(str, Enum):
    """Overall health derived from open alerts"""
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


# Every field default below is the neutral value substituted when a probe fails.

@dataclass(frozen=True)
class ConnectionMetrics:
    """Connection pool state"""
    active: int = 0
    idle: int = 0
    total: int = 0
    utilization: float = 0.0  # percent
    queue_length: int = 0


@dataclass(frozen=True)
class QueryMetrics:
    """Query throughput and latency"""
    slow_queries: int = 0
    total_queries: int = 0
    average_query_time: float = 0.0  # milliseconds
    queries_per_second: float = 0.0


@dataclass(frozen=True)
class DiskIOMetrics:
    """Disk activity counters"""
    reads: int = 0
    writes: int = 0
    read_latency: float = 0.0  # milliseconds
    write_latency: float = 0.0  # milliseconds


@dataclass(frozen=True)
class PerformanceMetrics:
    """Resource and engine performance counters"""
    cpu_usage: float = 0.0  # percent
    memory_usage: float = 0.0  # estimated GB
    disk_io: DiskIOMetrics = field(default_factory=DiskIOMetrics)
    buffer_pool_hit_rate: float = 100.0  # percent
    lock_wait_time: float = 0.0  # seconds


@dataclass(frozen=True)
class StorageMetrics:
    """Storage footprint of the monitored schema"""
    data_size: int = 0
    index_size: int = 0
    total_size: int = 0
    free_space: int = 0
    table_count: int = 0

    @property
    def disk_usage_percent(self) -> Optional[float]:
        """Share of allocated space in use, None when free space is unknown"""
        if self.free_space <= 0:
            return None
        return self.total_size / (self.total_size + self.free_space) * 100


@dataclass(frozen=True)
class ReplicationMetrics:
    """Replica status"""
    lag: float = 0.0  # seconds
    status: ReplicationState = ReplicationState.STOPPED
    sql_thread_running: bool = False
    io_thread_running: bool = False


@dataclass(frozen=True)
class MetricSnapshot:
    """One collection tick worth of metrics. Never mutated after creation."""
    timestamp: datetime
    connections: ConnectionMetrics = field(default_factory=ConnectionMetrics)
    queries: QueryMetrics = field(default_factory=QueryMetrics)
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    storage: StorageMetrics = field(default_factory=StorageMetrics)
    replication: Optional[ReplicationMetrics] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        if self.replication is not None:
            data["replication"]["status"] = self.replication.status.value
        return data


@dataclass
class Alert:
    """Threshold breach record. Only the resolution fields ever change."""
    id: str
    severity: AlertSeverity
    category: AlertCategory
    title: str
    description: str
    threshold: float
    current_value: float
    timestamp: datetime
    rule_name: str = ""
    resolved: bool = False
    resolved_at: Optional[datetime] = None


@dataclass(frozen=True)
class HealthReport:
    """Summary returned by DatabaseMonitor.get_health_status"""
    status: HealthStatus
    summary: str
    metrics: Optional[MetricSnapshot]
    active_alert_count: int
    last_check_time: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "summary": self.summary,
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "active_alert_count": self.active_alert_count,
            "last_check_time": self.last_check_time.isoformat() if self.last_check_time else None,
        }
