"""
dbpulse Database Package
Read-only access to the monitored relational engine
"""

from .source import MetricsSource, PoolStats, SQLAlchemyMetricsSource

__all__ = [
    'MetricsSource',
    'PoolStats',
    'SQLAlchemyMetricsSource',
]
