"""
Deep analysis jobs
Slow statement digest, table health and index inventory. Read-only and advisory.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from dbpulse.core.logging import get_logger
from dbpulse.database.rows import as_datetime, as_float, as_int, column_value
from dbpulse.database.source import MetricsSource
from dbpulse.monitoring.errors import AnalysisUnavailable


logger = get_logger(__name__)

SLOW_QUERY_LIMIT = 20
FRAGMENTATION_LIMIT_PERCENT = 10.0
INDEX_TO_DATA_RATIO_LIMIT = 2.0
ARCHIVE_ROW_COUNT_LIMIT = 1_000_000
ARCHIVE_MARKER = "_archive"

SLOW_QUERY_SQL = """
    SELECT
        DIGEST_TEXT AS query_text,
        COUNT_STAR AS exec_count,
        SUM_TIMER_WAIT / 1000000000000 AS total_time_sec,
        AVG_TIMER_WAIT / 1000000000000 AS avg_time_sec,
        MIN_TIMER_WAIT / 1000000000000 AS min_time_sec,
        MAX_TIMER_WAIT / 1000000000000 AS max_time_sec,
        LAST_SEEN AS last_seen
    FROM performance_schema.events_statements_summary_by_digest
    WHERE AVG_TIMER_WAIT / 1000000000000 > :threshold_sec
    ORDER BY AVG_TIMER_WAIT DESC
    LIMIT {limit}
"""

TABLE_HEALTH_SQL = """
    SELECT
        TABLE_NAME AS table_name,
        TABLE_ROWS AS row_count,
        DATA_LENGTH AS data_size,
        INDEX_LENGTH AS index_size,
        AVG_ROW_LENGTH AS avg_row_length,
        DATA_FREE AS data_free,
        UPDATE_TIME AS last_updated
    FROM information_schema.TABLES
    WHERE TABLE_SCHEMA = DATABASE()
    AND TABLE_TYPE = 'BASE TABLE'
    ORDER BY (DATA_LENGTH + INDEX_LENGTH) DESC
"""

INDEX_USAGE_SQL = """
    SELECT
        TABLE_NAME AS table_name,
        INDEX_NAME AS index_name,
        COLUMN_NAME AS column_name,
        CARDINALITY AS cardinality,
        INDEX_TYPE AS index_type
    FROM information_schema.STATISTICS
    WHERE TABLE_SCHEMA = DATABASE()
    ORDER BY TABLE_NAME, INDEX_NAME, SEQ_IN_INDEX
"""


@dataclass(frozen=True)
class SlowQuery:
    """One statement digest whose average latency exceeds the threshold"""
    query: str
    count: int
    total_time: float  # seconds
    average_time: float  # seconds
    min_time: float  # seconds
    max_time: float  # seconds
    last_seen: Optional[datetime] = None


@dataclass(frozen=True)
class SlowQueryReport:
    """Result of the hourly slow statement digest"""
    available: bool
    threshold_ms: float
    queries: List[SlowQuery] = field(default_factory=list)
    reason: Optional[str] = None
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class TableAnalysis:
    """Health assessment of one table"""
    table_name: str
    row_count: int
    data_size: int
    index_size: int
    avg_row_length: int
    fragmentation_ratio: float  # percent
    last_updated: Optional[datetime]
    recommended_actions: List[str] = field(default_factory=list)


@dataclass
class IndexAnalysis:
    """One index and its ordered columns"""
    table_name: str
    index_name: str
    index_type: str
    columns: List[str] = field(default_factory=list)
    cardinality: int = 0


@dataclass(frozen=True)
class ComprehensiveAnalysis:
    """Result of the daily deep analysis"""
    timestamp: datetime
    tables: List[TableAnalysis]
    indexes: List[IndexAnalysis]
    errors: List[str] = field(default_factory=list)


async def analyze_slow_queries(
    source: MetricsSource,
    threshold_ms: float,
    limit: int = SLOW_QUERY_LIMIT
) -> SlowQueryReport:
    """
    Statement digests slower on average than ``threshold_ms``, slowest first.

    A server without statement statistics yields an unavailable report
    rather than an error.
    """
    try:
        rows = await source.fetch_all(
            SLOW_QUERY_SQL.format(limit=int(limit)),
            {"threshold_sec": threshold_ms / 1000},
        )
    except Exception as e:
        logger.debug(f"Slow query analysis not available: {e}")
        return SlowQueryReport(available=False, threshold_ms=threshold_ms, reason=str(e))

    queries = [
        SlowQuery(
            query=str(column_value(row, "query_text") or ""),
            count=as_int(column_value(row, "exec_count")),
            total_time=as_float(column_value(row, "total_time_sec")),
            average_time=as_float(column_value(row, "avg_time_sec")),
            min_time=as_float(column_value(row, "min_time_sec")),
            max_time=as_float(column_value(row, "max_time_sec")),
            last_seen=as_datetime(column_value(row, "last_seen")),
        )
        for row in rows
    ]
    queries.sort(key=lambda q: q.average_time, reverse=True)

    logger.info(
        f"Slow query analysis completed: {len(queries)} statements over {threshold_ms}ms",
        extra={"slow_query_count": len(queries), "threshold_ms": threshold_ms}
    )
    return SlowQueryReport(available=True, threshold_ms=threshold_ms, queries=queries[:limit])


def recommend_table_actions(
    table_name: str,
    row_count: int,
    data_size: int,
    index_size: int,
    fragmentation_ratio: float
) -> List[str]:
    actions = []
    if fragmentation_ratio > FRAGMENTATION_LIMIT_PERCENT:
        actions.append("OPTIMIZE TABLE to reduce fragmentation")
    if index_size > data_size * INDEX_TO_DATA_RATIO_LIMIT:
        actions.append("Review index usage - too many indexes")
    if row_count > ARCHIVE_ROW_COUNT_LIMIT and ARCHIVE_MARKER not in table_name:
        actions.append("Consider archiving old data")
    return actions


async def _fetch_statistics(source: MetricsSource, sql: str, job: str) -> List[Dict]:
    try:
        return await source.fetch_all(sql)
    except Exception as e:
        raise AnalysisUnavailable(
            f"{job} statistics unavailable: {e}", {"job": job}
        ) from e


async def analyze_table_health(source: MetricsSource) -> List[TableAnalysis]:
    """Fragmentation, index bloat and archiving candidates per table"""
    rows = await _fetch_statistics(source, TABLE_HEALTH_SQL, "table health")

    tables = []
    for row in rows:
        name = str(column_value(row, "table_name") or "")
        row_count = as_int(column_value(row, "row_count"))
        data_size = as_int(column_value(row, "data_size"))
        index_size = as_int(column_value(row, "index_size"))
        data_free = as_int(column_value(row, "data_free"))
        fragmentation = (data_free / data_size) * 100 if data_size > 0 else 0.0

        tables.append(TableAnalysis(
            table_name=name,
            row_count=row_count,
            data_size=data_size,
            index_size=index_size,
            avg_row_length=as_int(column_value(row, "avg_row_length")),
            fragmentation_ratio=fragmentation,
            last_updated=as_datetime(column_value(row, "last_updated")),
            recommended_actions=recommend_table_actions(
                name, row_count, data_size, index_size, fragmentation
            ),
        ))
    return tables


async def analyze_index_usage(source: MetricsSource) -> List[IndexAnalysis]:
    """Group index statistics rows into one entry per index"""
    rows = await _fetch_statistics(source, INDEX_USAGE_SQL, "index usage")

    indexes: Dict[str, IndexAnalysis] = {}
    for row in rows:
        table = str(column_value(row, "table_name") or "")
        index = str(column_value(row, "index_name") or "")
        key = f"{table}.{index}"
        if key not in indexes:
            indexes[key] = IndexAnalysis(
                table_name=table,
                index_name=index,
                index_type=str(column_value(row, "index_type") or ""),
            )
        entry = indexes[key]
        entry.columns.append(str(column_value(row, "column_name") or ""))
        entry.cardinality = max(entry.cardinality, as_int(column_value(row, "cardinality")))

    return list(indexes.values())


async def run_comprehensive_analysis(source: MetricsSource) -> ComprehensiveAnalysis:
    """Table and index scans side by side; either may fail without losing the other"""
    table_result, index_result = await asyncio.gather(
        analyze_table_health(source),
        analyze_index_usage(source),
        return_exceptions=True,
    )

    errors = []
    tables: List[TableAnalysis] = []
    indexes: List[IndexAnalysis] = []
    if isinstance(table_result, BaseException):
        errors.append(f"table health: {table_result}")
        logger.error(f"Table health analysis failed: {table_result}")
    else:
        tables = table_result
    if isinstance(index_result, BaseException):
        errors.append(f"index usage: {index_result}")
        logger.error(f"Index usage analysis failed: {index_result}")
    else:
        indexes = index_result

    return ComprehensiveAnalysis(
        timestamp=datetime.now(timezone.utc),
        tables=tables,
        indexes=indexes,
        errors=errors,
    )

