"""
Metrics data source
Narrow read-only access to a relational engine for probes and analysis jobs
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from dbpulse.core.logging import LoggerMixin


@dataclass(frozen=True)
class PoolStats:
    """Connection pool counters"""
    active: int = 0
    idle: int = 0
    total: int = 0
    queued: int = 0


class MetricsSource(ABC):
    """Base interface for the monitored data store"""

    @abstractmethod
    async def pool_stats(self) -> PoolStats:
        """Current connection pool counters"""
        pass

    @abstractmethod
    async def fetch_all(
        self, sql: str, params: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Run a read-only query and return every row as a dict"""
        pass

    async def fetch_one(
        self, sql: str, params: Optional[Mapping[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Run a read-only query and return the first row, if any"""
        rows = await self.fetch_all(sql, params)
        return rows[0] if rows else None

    @abstractmethod
    async def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> None:
        """Run a statement that returns no rows"""
        pass

    async def close(self) -> None:
        """Release resources held by the source"""
        return None


class SQLAlchemyMetricsSource(MetricsSource, LoggerMixin):
    """
    MetricsSource backed by a SQLAlchemy AsyncEngine.

    Intended for MySQL through the ``mysql+aiomysql://`` dialect. Pool
    statistics come from the engine's QueuePool. SQLAlchemy does not expose
    the number of callers waiting for a connection, so ``queued`` reports the
    overflow connections currently opened beyond the base pool size.
    """

    def __init__(self, engine: AsyncEngine, owns_engine: bool = False):
        self.engine = engine
        self._owns_engine = owns_engine

    @classmethod
    def from_url(
        cls,
        url: str,
        pool_size: int = 10,
        max_overflow: int = 5,
        echo: bool = False
    ) -> "SQLAlchemyMetricsSource":
        engine = create_async_engine(
            url,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            echo=echo,
        )
        return cls(engine, owns_engine=True)

    async def pool_stats(self) -> PoolStats:
        pool = self.engine.sync_engine.pool
        size = getattr(pool, "size", None)
        if size is None:
            # NullPool/StaticPool keep no counters
            return PoolStats()

        checked_out = pool.checkedout()
        checked_in = pool.checkedin()
        overflow = max(pool.overflow(), 0)
        return PoolStats(
            active=checked_out,
            idle=checked_in,
            total=max(size() + overflow, checked_out + checked_in),
            queued=overflow,
        )

    async def fetch_all(
        self, sql: str, params: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        async with self.engine.connect() as conn:
            result = await conn.execute(text(sql), dict(params or {}))
            return [dict(row) for row in result.mappings().all()]

    async def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(text(sql), dict(params or {}))

    async def close(self) -> None:
        if self._owns_engine:
            await self.engine.dispose()
            self.logger.debug("Metrics source engine disposed")
