"""
Unit tests for the slow query digest and table/index analysis.
"""
import pytest

from dbpulse.monitoring.analysis import (
    analyze_index_usage, analyze_slow_queries, analyze_table_health,
    recommend_table_actions, run_comprehensive_analysis
)
from dbpulse.monitoring.errors import AnalysisUnavailable

from conftest import FakeMetricsSource


def digest_row(query: str, avg: float, count: int = 1):
    return {
        "query_text": query,
        "exec_count": count,
        "total_time_sec": avg * count,
        "avg_time_sec": avg,
        "min_time_sec": avg / 2,
        "max_time_sec": avg * 2,
        "last_seen": "2024-01-01T11:59:00",
    }


class TestSlowQueries:

    @pytest.mark.asyncio
    async def test_sorted_slowest_first_and_limited(self):
        source = FakeMetricsSource(responses={"events_statements_summary_by_digest": [
            digest_row("SELECT 1", 1.5),
            digest_row("SELECT 2", 4.0),
            digest_row("SELECT 3", 2.0),
        ]})
        report = await analyze_slow_queries(source, threshold_ms=1000, limit=2)

        assert report.available is True
        assert [q.query for q in report.queries] == ["SELECT 2", "SELECT 3"]
        assert report.queries[0].max_time == pytest.approx(8.0)
        assert report.queries[0].last_seen is not None

    @pytest.mark.asyncio
    async def test_unavailable_statistics(self):
        source = FakeMetricsSource(failures={
            "performance_schema": RuntimeError("Table 'performance_schema...' doesn't exist")
        })
        report = await analyze_slow_queries(source, threshold_ms=1000)

        assert report.available is False
        assert report.queries == []
        assert "doesn't exist" in report.reason


class TestTableHealth:

    @pytest.mark.asyncio
    async def test_fragmentation_and_recommendations(self):
        source = FakeMetricsSource(responses={"information_schema.TABLES": [
            {
                "table_name": "orders", "row_count": 2_000_000, "data_size": 1000,
                "index_size": 2500, "avg_row_length": 120, "data_free": 200,
                "last_updated": None,
            },
            {
                "table_name": "orders_archive", "row_count": 5_000_000, "data_size": 1000,
                "index_size": 100, "avg_row_length": 80, "data_free": 0,
                "last_updated": None,
            },
        ]})
        tables = await analyze_table_health(source)

        orders, archive = tables
        assert orders.fragmentation_ratio == pytest.approx(20.0)
        assert len(orders.recommended_actions) == 3
        assert archive.recommended_actions == []

    @pytest.mark.asyncio
    async def test_failure_raises_analysis_unavailable(self):
        source = FakeMetricsSource(failures={"information_schema": RuntimeError("denied")})

        with pytest.raises(AnalysisUnavailable):
            await analyze_table_health(source)

    def test_recommendations_for_healthy_table(self):
        assert recommend_table_actions("users", 1000, 5000, 1000, 1.0) == []


class TestIndexUsage:

    @pytest.mark.asyncio
    async def test_groups_columns_per_index(self):
        source = FakeMetricsSource(responses={"information_schema.STATISTICS": [
            {"table_name": "orders", "index_name": "PRIMARY", "column_name": "id",
             "cardinality": 1000, "index_type": "BTREE"},
            {"table_name": "orders", "index_name": "idx_customer_date", "column_name": "customer_id",
             "cardinality": 50, "index_type": "BTREE"},
            {"table_name": "orders", "index_name": "idx_customer_date", "column_name": "created_at",
             "cardinality": 900, "index_type": "BTREE"},
        ]})
        indexes = await analyze_index_usage(source)

        assert [i.index_name for i in indexes] == ["PRIMARY", "idx_customer_date"]
        assert indexes[1].columns == ["customer_id", "created_at"]
        assert indexes[1].cardinality == 900


class TestComprehensiveAnalysis:

    @pytest.mark.asyncio
    async def test_one_scan_failing_keeps_the_other(self):
        source = FakeMetricsSource(
            responses={"information_schema.STATISTICS": [
                {"table_name": "t", "index_name": "PRIMARY", "column_name": "id",
                 "cardinality": 1, "index_type": "BTREE"},
            ]},
            failures={"information_schema.TABLES": RuntimeError("denied")},
        )
        analysis = await run_comprehensive_analysis(source)

        assert analysis.tables == []
        assert len(analysis.indexes) == 1
        assert len(analysis.errors) == 1
        assert analysis.errors[0].startswith("table health")
