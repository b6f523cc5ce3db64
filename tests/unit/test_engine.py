"""
Unit tests for the DatabaseMonitor engine.
"""
import asyncio
from datetime import timedelta

import pytest

from dbpulse.core.config import MonitoringConfig, NotificationConfig
from dbpulse.monitoring.engine import COLLECTION_CADENCE, DAILY_CADENCE, HOURLY_CADENCE, DatabaseMonitor
from dbpulse.monitoring.events import MonitorEvent
from dbpulse.monitoring.models import AlertSeverity, HealthStatus
from dbpulse.monitoring.notifications import WebhookNotifier

from conftest import FakeMetricsSource, StaticProbe, make_snapshot, neutral_probes


class RecordingNotifier(WebhookNotifier):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.sent = []

    async def notify(self, alert):
        self.sent.append(alert)
        return True


class StalledSource(FakeMetricsSource):
    """Server that accepts statements and never answers"""

    async def execute(self, sql, params=None):
        await asyncio.sleep(3600)
        self.executed.append(sql)


def make_monitor(config, clock, utilizations=(10.0,), **kwargs) -> DatabaseMonitor:
    return DatabaseMonitor(
        FakeMetricsSource(),
        config,
        probes=neutral_probes(utilizations),
        clock=clock,
        **kwargs
    )


class TestCollection:

    @pytest.mark.asyncio
    async def test_collect_once_stores_snapshot(self, monitoring_config, clock):
        monitor = make_monitor(monitoring_config, clock)

        snapshot = await monitor.collect_once()

        assert monitor.get_latest_metrics() is snapshot
        assert snapshot.timestamp == clock()
        assert monitor.get_stats()['collections'] == 1
        assert monitor.get_active_alerts() == []

    @pytest.mark.asyncio
    async def test_probe_failures_are_counted(self, monitoring_config, clock):
        probes = neutral_probes([10.0])
        probes[1] = StaticProbe("performance", [RuntimeError("status denied")])
        monitor = DatabaseMonitor(FakeMetricsSource(), monitoring_config, probes=probes, clock=clock)

        snapshot = await monitor.collect_once()

        assert snapshot.performance.buffer_pool_hit_rate == 100.0
        assert monitor.get_stats()['probe_failures'] == 1

    @pytest.mark.asyncio
    async def test_alerting_disabled(self, clock):
        config = MonitoringConfig(alerting_enabled=False)
        monitor = make_monitor(config, clock, utilizations=[99.0])

        await monitor.collect_once()

        assert monitor.get_active_alerts() == []

    @pytest.mark.asyncio
    async def test_metrics_listener(self, monitoring_config, clock):
        monitor = make_monitor(monitoring_config, clock)
        received = []
        monitor.add_listener(MonitorEvent.METRICS_COLLECTED, received.append)

        snapshot = await monitor.collect_once()

        assert received == [snapshot]

    @pytest.mark.asyncio
    async def test_metrics_history_window(self, monitoring_config, clock):
        monitor = make_monitor(monitoring_config, clock)
        for _ in range(4):
            await monitor.collect_once()
            clock.advance(hours=1)

        assert len(monitor.get_metrics_history(hours=2)) == 2
        assert len(monitor.get_metrics_history()) == 4

    @pytest.mark.asyncio
    async def test_huge_history_window_returns_everything(self, monitoring_config, clock):
        monitor = make_monitor(monitoring_config, clock)
        await monitor.collect_once()

        assert len(monitor.get_metrics_history(hours=10**8)) == 1
        assert len(monitor.get_metrics_history(hours=1e300)) == 1


class TestHealthStatus:

    def test_no_data(self, monitoring_config, clock):
        report = make_monitor(monitoring_config, clock).get_health_status()

        assert report.status == HealthStatus.HEALTHY
        assert report.metrics is None
        assert report.last_check_time is None

    @pytest.mark.asyncio
    async def test_healthy(self, monitoring_config, clock):
        monitor = make_monitor(monitoring_config, clock)
        await monitor.collect_once()

        report = monitor.get_health_status()
        assert report.status == HealthStatus.HEALTHY
        assert report.summary == "All systems operating normally"
        assert report.last_check_time == clock()

    @pytest.mark.asyncio
    async def test_warning(self, monitoring_config, clock):
        monitor = make_monitor(monitoring_config, clock, utilizations=[90.0])
        await monitor.collect_once()

        report = monitor.get_health_status()
        assert report.status == HealthStatus.WARNING
        assert report.summary == "1 performance warning(s) detected"
        assert report.active_alert_count == 1

    @pytest.mark.asyncio
    async def test_critical_outranks_warning(self, monitoring_config, clock):
        monitor = make_monitor(monitoring_config, clock, utilizations=[90.0, 97.0])
        await monitor.collect_once()
        clock.advance(minutes=1)
        await monitor.collect_once()

        report = monitor.get_health_status()
        assert report.status == HealthStatus.CRITICAL
        assert report.summary == "Critical issues detected requiring immediate attention"
        assert report.active_alert_count == 2
        assert report.to_dict()["status"] == "critical"

    @pytest.mark.asyncio
    async def test_report_dict_uses_field_names(self, monitoring_config, clock):
        monitor = make_monitor(monitoring_config, clock, utilizations=[90.0])
        await monitor.collect_once()

        data = monitor.get_health_status().to_dict()

        assert data["active_alert_count"] == 1
        assert data["last_check_time"] == clock().isoformat()
        assert data["metrics"]["connections"]["utilization"] == 90.0

    @pytest.mark.asyncio
    async def test_resolving_restores_health(self, monitoring_config, clock):
        monitor = make_monitor(monitoring_config, clock, utilizations=[99.0])
        await monitor.collect_once()

        alert = monitor.get_active_alerts()[0]
        assert alert.severity == AlertSeverity.CRITICAL
        assert monitor.resolve_alert(alert.id) is True
        assert monitor.resolve_alert(alert.id) is False
        assert monitor.get_health_status().status == HealthStatus.HEALTHY


class TestAnalysisJobs:

    @pytest.mark.asyncio
    async def test_hourly_analysis_publishes_report(self, monitoring_config, clock):
        monitor = make_monitor(monitoring_config, clock)
        reports = []
        monitor.add_listener(MonitorEvent.SLOW_QUERY_ANALYSIS, reports.append)

        report = await monitor.run_hourly_analysis()

        assert reports == [report]
        assert report.threshold_ms == monitoring_config.thresholds.slow_query_ms

    @pytest.mark.asyncio
    async def test_daily_analysis_cleans_history(self, monitoring_config, clock):
        monitor = make_monitor(monitoring_config, clock)
        monitor.history.append(make_snapshot(timestamp=clock() - timedelta(days=3)))
        await monitor.collect_once()

        analysis = await monitor.run_daily_analysis()

        assert analysis.errors == []
        assert len(monitor.history) == 1


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_registers_three_cadences(self, monitoring_config, clock):
        monitor = make_monitor(monitoring_config, clock)

        async with monitor:
            assert monitor.is_running
            names = [c.name for c in monitor.scheduler.cadences]
            assert names == [COLLECTION_CADENCE, HOURLY_CADENCE, DAILY_CADENCE]

        assert not monitor.is_running

    @pytest.mark.asyncio
    async def test_disabled_monitor_does_not_start(self, clock):
        monitor = make_monitor(MonitoringConfig(enabled=False), clock)

        await monitor.start()

        assert not monitor.is_running
        assert monitor.scheduler.cadences == []

    @pytest.mark.asyncio
    async def test_collection_cadence_runs(self, clock):
        config = MonitoringConfig(collection_interval=0.05, shutdown_timeout=1.0)
        monitor = make_monitor(config, clock)

        await monitor.start()
        await asyncio.sleep(0.18)
        await monitor.shutdown()

        assert monitor.get_stats()['collections'] >= 2

    @pytest.mark.asyncio
    async def test_slow_query_log_opt_in(self, clock):
        source = FakeMetricsSource()
        config = MonitoringConfig(enable_slow_query_log=True)
        monitor = DatabaseMonitor(source, config, probes=neutral_probes([10.0]), clock=clock)

        async with monitor:
            pass

        assert any("slow_query_log" in sql for sql in source.executed)

    @pytest.mark.asyncio
    async def test_slow_query_log_failure_is_tolerated(self, clock):
        source = FakeMetricsSource(failures={"SET GLOBAL": PermissionError("SUPER required")})
        config = MonitoringConfig(enable_slow_query_log=True)
        monitor = DatabaseMonitor(source, config, probes=neutral_probes([10.0]), clock=clock)

        await monitor.start()
        assert monitor.is_running
        await monitor.shutdown()

    @pytest.mark.asyncio
    async def test_stalled_slow_query_log_setup_does_not_block_start(self, clock):
        source = StalledSource()
        config = MonitoringConfig(enable_slow_query_log=True, probe_timeout=0.1, shutdown_timeout=1.0)
        monitor = DatabaseMonitor(source, config, probes=neutral_probes([10.0]), clock=clock)

        await asyncio.wait_for(monitor.start(), timeout=2)

        assert monitor.is_running
        assert source.executed == []
        await monitor.shutdown()


class TestNotifications:

    @pytest.mark.asyncio
    async def test_notifier_receives_new_alerts(self, monitoring_config, clock):
        notifier = RecordingNotifier(NotificationConfig(), "orders-db", "test")
        monitor = make_monitor(monitoring_config, clock, utilizations=[99.0], notifier=notifier)

        await monitor.collect_once()
        await monitor.events.drain(timeout=1)

        assert len(notifier.sent) == 1
        assert notifier.sent[0].severity == AlertSeverity.CRITICAL

    def test_webhook_enabled_builds_notifier(self, clock):
        config = MonitoringConfig(notifications=NotificationConfig(
            webhook_enabled=True, webhook_url="https://hooks.example.com/db"
        ))
        monitor = make_monitor(config, clock)

        assert isinstance(monitor.notifier, WebhookNotifier)
        assert monitor.events.handler_count(MonitorEvent.ALERT_OPENED) == 1
