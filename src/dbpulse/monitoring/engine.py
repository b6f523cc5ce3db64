"""
Database Monitor
Probes -> snapshot -> history -> alert evaluation -> notification, driven by
three independent cadences:

- collection: sample probes, append the snapshot, evaluate alert rules
- hourly: slow statement digest
- daily: table/index health scan followed by history cleanup

Each DatabaseMonitor owns its own history, alerts and scheduler; several
monitors can run side by side in one process.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from dbpulse.core.config import MonitoringConfig
from dbpulse.core.logging import LoggerMixin
from dbpulse.database.source import MetricsSource
from dbpulse.monitoring.alerting import AlertEngine
from dbpulse.monitoring.analysis import (
    ComprehensiveAnalysis, SlowQueryReport, analyze_slow_queries, run_comprehensive_analysis
)
from dbpulse.monitoring.events import EventDispatcher, Handler, MonitorEvent
from dbpulse.monitoring.history import HistoryStore
from dbpulse.monitoring.models import (
    Alert, AlertSeverity, HealthReport, HealthStatus, MetricSnapshot
)
from dbpulse.monitoring.notifications import WebhookNotifier
from dbpulse.monitoring.probes import MetricProbe, collect_snapshot, default_probes
from dbpulse.monitoring.scheduler import MonitorScheduler


COLLECTION_CADENCE = "collection"
HOURLY_CADENCE = "hourly-query-analysis"
DAILY_CADENCE = "daily-analysis"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DatabaseMonitor(LoggerMixin):
    """
    Database Performance Monitor

    Query methods (latest metrics, history, alerts, health) are safe to call
    at any time, including while a collection tick is running.
    """

    def __init__(
        self,
        source: MetricsSource,
        config: Optional[MonitoringConfig] = None,
        notifier: Optional[WebhookNotifier] = None,
        probes: Optional[Sequence[MetricProbe]] = None,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.source = source
        self.config = config or MonitoringConfig()
        self._clock = clock

        self.events = EventDispatcher()
        self.history = HistoryStore.for_retention(self.config.retention, clock=clock)
        self.alerts = AlertEngine.with_default_rules(
            self.config.thresholds, dispatcher=self.events, clock=clock
        )
        self.probes: List[MetricProbe] = list(probes) if probes is not None else default_probes(source)
        self.scheduler = MonitorScheduler()

        if notifier is None and self.config.notifications.webhook_enabled:
            notifier = WebhookNotifier(
                self.config.notifications,
                service_name=self.config.service_name,
                environment=self.config.environment,
            )
        self.notifier = notifier
        if self.notifier is not None:
            self.events.subscribe(MonitorEvent.ALERT_OPENED, self.notifier.notify)

        self._running = False
        self._stats: Dict[str, Any] = {
            'collections': 0,
            'probe_failures': 0,
            'last_collection_ms': 0.0,
            'last_collection_at': None,
        }

    # Lifecycle

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Register the three cadences and start them"""
        if not self.config.enabled:
            self.logger.info("Database monitoring disabled")
            return
        if self._running:
            self.logger.warning("Database monitoring is already running")
            return

        self.logger.info(
            "Initializing database monitoring",
            extra={
                "collection_interval": self.config.collection_interval,
                "alerting_enabled": self.config.alerting_enabled,
                "retention_days": self.config.retention_days,
            }
        )

        if not self.scheduler.cadences:
            self.scheduler.add_cadence(
                COLLECTION_CADENCE, self.config.collection_interval, self.collect_once
            )
            self.scheduler.add_cadence(
                HOURLY_CADENCE, self.config.hourly_interval, self.run_hourly_analysis
            )
            self.scheduler.add_cadence(
                DAILY_CADENCE, self.config.daily_interval, self.run_daily_analysis
            )

        if self.config.enable_slow_query_log:
            await self._enable_slow_query_logging()

        self.scheduler.start()
        self._running = True
        self.logger.info("Database monitoring started")

    async def shutdown(self) -> None:
        """Stop every cadence, letting in-flight ticks finish within the shutdown timeout"""
        if not self._running:
            return
        self.logger.info("Shutting down database monitoring")

        timeout = self.config.shutdown_timeout
        await self.scheduler.stop(timeout=timeout)
        await self.events.drain(timeout=timeout)
        if self.notifier is not None:
            await self.notifier.aclose()

        self._running = False
        self.logger.info("Database monitoring shutdown completed")

    async def __aenter__(self) -> "DatabaseMonitor":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    def add_listener(self, event: MonitorEvent, handler: Handler) -> None:
        """React to monitor events (new alerts, collected metrics, analyses)"""
        self.events.subscribe(event, handler)

    # Cadence jobs

    async def collect_once(self) -> MetricSnapshot:
        """One collection tick: sample, store, evaluate"""
        started = time.perf_counter()

        result = await collect_snapshot(
            self.probes, timeout=self.config.probe_timeout, clock=self._clock
        )
        snapshot = result.snapshot
        for error in result.errors:
            self.logger.debug(f"Metric probe unavailable: {error}")

        self.history.append(snapshot)

        if self.config.alerting_enabled:
            self.alerts.evaluate(snapshot)

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._stats['collections'] += 1
        self._stats['probe_failures'] += len(result.errors)
        self._stats['last_collection_ms'] = elapsed_ms
        self._stats['last_collection_at'] = snapshot.timestamp

        self.log_with_context(
            logging.DEBUG,
            f"Database metrics collected in {elapsed_ms:.1f}ms",
            {
                "connections_active": snapshot.connections.active,
                "queries_per_second": snapshot.queries.queries_per_second,
                "cpu_usage": snapshot.performance.cpu_usage,
                "probe_failures": len(result.errors),
            }
        )

        self.events.publish(MonitorEvent.METRICS_COLLECTED, snapshot)
        return snapshot

    async def run_hourly_analysis(self) -> SlowQueryReport:
        report = await analyze_slow_queries(
            self.source,
            threshold_ms=self.config.thresholds.slow_query_ms,
            limit=self.config.slow_query_limit,
        )
        if not report.available:
            self.logger.debug(f"Slow query analysis unavailable: {report.reason}")
        self.events.publish(MonitorEvent.SLOW_QUERY_ANALYSIS, report)
        return report

    async def run_daily_analysis(self) -> ComprehensiveAnalysis:
        self.logger.info("Starting comprehensive database analysis")
        try:
            analysis = await run_comprehensive_analysis(self.source)
            self.logger.info(
                "Comprehensive database analysis completed",
                extra={
                    "tables_analyzed": len(analysis.tables),
                    "indexes_analyzed": len(analysis.indexes),
                }
            )
            self.events.publish(MonitorEvent.COMPREHENSIVE_ANALYSIS, analysis)
            return analysis
        finally:
            self.cleanup_history()

    def cleanup_history(self) -> int:
        """Drop snapshots older than the retention window"""
        return self.history.evict_older_than(self.config.retention_days)

    async def _enable_slow_query_logging(self) -> None:
        threshold_seconds = self.config.thresholds.slow_query_ms / 1000

        async def _apply() -> None:
            await self.source.execute("SET GLOBAL slow_query_log = 'ON'")
            await self.source.execute(
                "SET GLOBAL long_query_time = :threshold", {"threshold": threshold_seconds}
            )
            await self.source.execute("SET GLOBAL log_queries_not_using_indexes = 'ON'")

        try:
            await asyncio.wait_for(_apply(), timeout=self.config.probe_timeout)
            self.logger.info(f"Slow query logging enabled at {threshold_seconds}s")
        except asyncio.TimeoutError:
            self.logger.warning(
                f"Could not enable slow query logging: no reply within {self.config.probe_timeout}s"
            )
        except Exception as e:
            self.logger.warning(f"Could not enable slow query logging: {e}")

    # Query API

    def get_latest_metrics(self) -> Optional[MetricSnapshot]:
        return self.history.latest()

    def get_metrics_history(self, hours: float = 24) -> List[MetricSnapshot]:
        try:
            window = timedelta(hours=hours)
        except OverflowError:
            window = timedelta.max
        return self.history.range(window).to_list()

    def get_active_alerts(self) -> List[Alert]:
        return self.alerts.active_alerts()

    def resolve_alert(self, alert_id: str) -> bool:
        return self.alerts.resolve(alert_id)

    def get_health_status(self) -> HealthReport:
        latest = self.get_latest_metrics()
        active = self.get_active_alerts()

        if any(a.severity == AlertSeverity.CRITICAL for a in active):
            status = HealthStatus.CRITICAL
            summary = "Critical issues detected requiring immediate attention"
        elif active:
            status = HealthStatus.WARNING
            summary = f"{len(active)} performance warning(s) detected"
        else:
            status = HealthStatus.HEALTHY
            summary = "All systems operating normally"

        return HealthReport(
            status=status,
            summary=summary,
            metrics=latest,
            active_alert_count=len(active),
            last_check_time=latest.timestamp if latest else None,
        )

    def get_stats(self) -> Dict[str, Any]:
        alert_stats = self.alerts.get_stats()
        return {
            **self._stats,
            'alerts_opened': alert_stats['alerts_opened'],
            'alerts_resolved': alert_stats['alerts_resolved'],
            'snapshots_retained': len(self.history),
            'cadences': self.scheduler.get_stats(),
        }
