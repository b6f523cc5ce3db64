"""
Alert Engine
Threshold rules evaluated against the newest snapshot, plus the open/resolved
alert lifecycle.

Every breach opens a new alert record, even when an equivalent alert from an
earlier tick is still open.
"""

import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Union

from dbpulse.core.config import ThresholdConfig
from dbpulse.core.logging import LoggerMixin
from dbpulse.monitoring.events import EventDispatcher, MonitorEvent
from dbpulse.monitoring.models import Alert, AlertCategory, AlertSeverity, MetricSnapshot


CRITICAL_CONNECTION_UTILIZATION = 95.0  # percent

SeverityPolicy = Union[AlertSeverity, Callable[[float], AlertSeverity]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_alert_id() -> str:
    return f"alert-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


def connection_severity(utilization: float) -> AlertSeverity:
    """Utilization above 95% is critical, anything else over threshold a warning"""
    if utilization > CRITICAL_CONNECTION_UTILIZATION:
        return AlertSeverity.CRITICAL
    return AlertSeverity.WARNING


@dataclass(frozen=True)
class ThresholdRule:
    """
    Stateless predicate over a snapshot.

    ``extract`` returns the observed value, or None when the snapshot carries
    nothing to judge (e.g. no replication on a primary).
    """
    name: str
    category: AlertCategory
    title: str
    threshold: float
    extract: Callable[[MetricSnapshot], Optional[float]]
    severity: SeverityPolicy
    describe: Callable[[float], str]
    below: bool = False

    def observe(self, snapshot: MetricSnapshot) -> Optional[float]:
        return self.extract(snapshot)

    def is_breached(self, value: float) -> bool:
        return value < self.threshold if self.below else value > self.threshold

    def severity_for(self, value: float) -> AlertSeverity:
        if isinstance(self.severity, AlertSeverity):
            return self.severity
        return self.severity(value)


def default_rules(thresholds: ThresholdConfig) -> List[ThresholdRule]:
    """Standard rule set"""
    return [
        ThresholdRule(
            name="connection_utilization",
            category=AlertCategory.CONNECTION,
            title="High Connection Pool Utilization",
            threshold=thresholds.connection_utilization,
            extract=lambda s: s.connections.utilization,
            severity=connection_severity,
            describe=lambda v: f"Connection pool utilization is at {v:.1f}%",
        ),
        ThresholdRule(
            name="buffer_pool_hit_rate",
            category=AlertCategory.RESOURCE,
            title="Low Buffer Pool Hit Rate",
            threshold=thresholds.buffer_pool_hit_rate,
            extract=lambda s: s.performance.buffer_pool_hit_rate,
            severity=AlertSeverity.WARNING,
            describe=lambda v: f"Buffer pool hit rate is {v:.1f}%",
            below=True,
        ),
        ThresholdRule(
            name="lock_wait_time",
            category=AlertCategory.QUERY,
            title="High Lock Wait Time",
            threshold=thresholds.lock_wait_seconds,
            extract=lambda s: s.performance.lock_wait_time,
            severity=AlertSeverity.ERROR,
            describe=lambda v: f"Average lock wait time is {v:.2f} seconds",
        ),
        ThresholdRule(
            name="replication_lag",
            category=AlertCategory.REPLICATION,
            title="High Replication Lag",
            threshold=thresholds.replication_lag_seconds,
            extract=lambda s: s.replication.lag if s.replication is not None else None,
            severity=AlertSeverity.ERROR,
            describe=lambda v: f"Replication lag is {v:.0f} seconds",
        ),
        ThresholdRule(
            name="disk_usage",
            category=AlertCategory.STORAGE,
            title="High Disk Usage",
            threshold=thresholds.disk_usage,
            extract=lambda s: s.storage.disk_usage_percent,
            severity=AlertSeverity.WARNING,
            describe=lambda v: f"Allocated storage is {v:.1f}% used",
        ),
    ]


class AlertEngine(LoggerMixin):
    """
    Owns every alert record.

    Evaluation (collection cadence) and resolution (external callers) both
    mutate the alert collection under one lock. New alerts are published as
    ``ALERT_OPENED`` events after the lock is released; subscribers such as
    the webhook notifier run without blocking evaluation.
    """

    def __init__(
        self,
        rules: List[ThresholdRule],
        dispatcher: Optional[EventDispatcher] = None,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.rules = list(rules)
        self.dispatcher = dispatcher or EventDispatcher()
        self._clock = clock
        self._alerts: "OrderedDict[str, Alert]" = OrderedDict()
        self._lock = threading.RLock()
        self._stats = {
            'evaluations': 0,
            'alerts_opened': 0,
            'alerts_resolved': 0,
            'rule_errors': 0,
        }

    @classmethod
    def with_default_rules(
        cls,
        thresholds: ThresholdConfig,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Callable[[], datetime] = _utcnow
    ) -> "AlertEngine":
        return cls(default_rules(thresholds), dispatcher, clock)

    def evaluate(self, snapshot: MetricSnapshot) -> List[Alert]:
        """Check every rule against ``snapshot``; returns the alerts opened"""
        opened: List[Alert] = []

        for rule in self.rules:
            try:
                value = rule.observe(snapshot)
                if value is None or not rule.is_breached(value):
                    continue
                opened.append(self._build_alert(rule, value))
            except Exception as e:
                self._stats['rule_errors'] += 1
                self.logger.error(f"Error evaluating alert rule {rule.name}: {e}")

        with self._lock:
            self._stats['evaluations'] += 1
            for alert in opened:
                self._alerts[alert.id] = alert
            self._stats['alerts_opened'] += len(opened)

        for alert in opened:
            self._announce(alert)

        return [replace(alert) for alert in opened]

    def _build_alert(self, rule: ThresholdRule, value: float) -> Alert:
        return Alert(
            id=generate_alert_id(),
            severity=rule.severity_for(value),
            category=rule.category,
            title=rule.title,
            description=rule.describe(value),
            threshold=rule.threshold,
            current_value=value,
            timestamp=self._clock(),
            rule_name=rule.name,
        )

    def _announce(self, alert: Alert) -> None:
        log = self.logger.critical if alert.severity == AlertSeverity.CRITICAL else self.logger.warning
        log(
            f"Database performance alert triggered: {alert.title}",
            extra={
                "alert_id": alert.id,
                "severity": alert.severity.value,
                "category": alert.category.value,
                "current_value": alert.current_value,
                "threshold": alert.threshold,
            }
        )
        self.dispatcher.publish(MonitorEvent.ALERT_OPENED, replace(alert))

    def resolve(self, alert_id: str) -> bool:
        """
        Mark an alert resolved.

        Returns False for unknown or already-resolved ids; never raises.
        """
        with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.resolved:
                return False
            alert.resolved = True
            alert.resolved_at = self._clock()
            self._stats['alerts_resolved'] += 1
            resolved = replace(alert)

        self.logger.info(f"Alert resolved: {alert_id}")
        self.dispatcher.publish(MonitorEvent.ALERT_RESOLVED, resolved)
        return True

    def get(self, alert_id: str) -> Optional[Alert]:
        with self._lock:
            alert = self._alerts.get(alert_id)
            return replace(alert) if alert else None

    def active_alerts(self) -> List[Alert]:
        """Open alerts, oldest first, as copies"""
        with self._lock:
            return [replace(a) for a in self._alerts.values() if not a.resolved]

    def all_alerts(self) -> List[Alert]:
        with self._lock:
            return [replace(a) for a in self._alerts.values()]

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)
