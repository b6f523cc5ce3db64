"""
Monitoring error types
"""

from datetime import datetime
from typing import Any, Dict, Optional


class MonitoringError(Exception):
    """Base class for monitoring errors"""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.timestamp = datetime.now()


class ProbeError(MonitoringError):
    """A metric probe could not sample its category"""

    def __init__(self, probe: str, cause: BaseException):
        super().__init__(f"Probe '{probe}' failed: {cause!r}", {"probe": probe})
        self.probe = probe
        self.cause = cause


class AnalysisUnavailable(MonitoringError):
    """The data source has no statistics facility for an analysis job"""


class SchedulerError(MonitoringError):
    """Invalid scheduler lifecycle operation"""
