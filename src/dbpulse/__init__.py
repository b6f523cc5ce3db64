"""
dbpulse - Database Performance Monitoring & Alerting
Periodic health sampling, rolling history, threshold alerts and scheduled analysis
for relational data stores.

Handlers are left to the host application; the ``dbpulse`` command installs
its own through ``setup_logging``.
"""

import logging

__version__ = "0.1.0"

from dbpulse.core.config import settings
from dbpulse.core.logging import get_logger, setup_logging

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = ["settings", "get_logger", "setup_logging", "__version__"]
