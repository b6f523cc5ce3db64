"""
Database Performance Monitoring
Probes, snapshot history, threshold alerts and scheduled analysis
"""

from .alerting import AlertEngine, ThresholdRule, default_rules
from .engine import DatabaseMonitor
from .events import EventDispatcher, MonitorEvent
from .history import HistoryStore
from .models import (
    Alert, AlertCategory, AlertSeverity, HealthReport, HealthStatus, MetricSnapshot
)
from .notifications import WebhookNotifier
from .scheduler import MonitorScheduler

__all__ = [
    'Alert',
    'AlertCategory',
    'AlertEngine',
    'AlertSeverity',
    'DatabaseMonitor',
    'EventDispatcher',
    'HealthReport',
    'HealthStatus',
    'HistoryStore',
    'MetricSnapshot',
    'MonitorEvent',
    'MonitorScheduler',
    'ThresholdRule',
    'WebhookNotifier',
    'default_rules',
]
