"""
dbpulse CLI Main Entry Point
"""

import asyncio
import logging
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from dbpulse import __version__
from dbpulse.core.config import MonitoringConfig, settings
from dbpulse.core.logging import get_logger, setup_logging
from dbpulse.database.source import SQLAlchemyMetricsSource
from dbpulse.monitoring.analysis import (
    ComprehensiveAnalysis, SlowQueryReport, analyze_slow_queries, run_comprehensive_analysis
)
from dbpulse.monitoring.engine import DatabaseMonitor
from dbpulse.monitoring.models import AlertSeverity, HealthReport, HealthStatus, MetricSnapshot
from dbpulse.monitoring.probes import collect_snapshot, default_probes

logger = get_logger(__name__)
console = Console()

app = typer.Typer(
    name="dbpulse",
    help="dbpulse - Database performance monitoring and alerting",
    rich_markup_mode="rich",
    no_args_is_help=True,
)

STATUS_STYLES = {
    HealthStatus.HEALTHY: "green",
    HealthStatus.WARNING: "yellow",
    HealthStatus.CRITICAL: "red",
}

SEVERITY_STYLES = {
    AlertSeverity.WARNING: "yellow",
    AlertSeverity.ERROR: "red",
    AlertSeverity.CRITICAL: "bold red",
}


def _resolve_url(url: Optional[str]) -> str:
    resolved = url or settings.DATABASE_URL
    if not resolved:
        console.print("[red]No database URL. Pass --url or set DATABASE_URL.[/red]")
        raise typer.Exit(code=1)
    return resolved


def _open_source(url: str) -> SQLAlchemyMetricsSource:
    return SQLAlchemyMetricsSource.from_url(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
    )


def snapshot_table(snapshot: MetricSnapshot) -> Table:
    table = Table(title=f"Database Metrics - {snapshot.timestamp:%Y-%m-%d %H:%M:%S}")
    table.add_column("Category", style="cyan")
    table.add_column("Metric", style="white")
    table.add_column("Value", style="green", justify="right")

    c, q, p, s = snapshot.connections, snapshot.queries, snapshot.performance, snapshot.storage
    table.add_row("connections", "active / idle / total", f"{c.active} / {c.idle} / {c.total}")
    table.add_row("", "utilization", f"{c.utilization:.1f}%")
    table.add_row("", "queue length", str(c.queue_length))
    table.add_row("queries", "per second", f"{q.queries_per_second:.2f}")
    table.add_row("", "average time", f"{q.average_query_time:.2f} ms")
    table.add_row("", "slow / total", f"{q.slow_queries} / {q.total_queries}")
    table.add_row("performance", "cpu", f"{p.cpu_usage:.1f}%")
    table.add_row("", "memory estimate", f"{p.memory_usage:.2f} GB")
    table.add_row("", "buffer pool hit rate", f"{p.buffer_pool_hit_rate:.2f}%")
    table.add_row("", "lock wait", f"{p.lock_wait_time:.3f} s")
    table.add_row("", "disk reads / writes", f"{p.disk_io.reads} / {p.disk_io.writes}")
    table.add_row("storage", "data / index bytes", f"{s.data_size} / {s.index_size}")
    table.add_row("", "free bytes", str(s.free_space))
    table.add_row("", "tables", str(s.table_count))
    if snapshot.replication is None:
        table.add_row("replication", "status", "[dim]not a replica[/dim]")
    else:
        table.add_row("replication", "status", snapshot.replication.status.value)
        table.add_row("", "lag", f"{snapshot.replication.lag:.0f} s")
    return table


def health_panel(report: HealthReport, alerts: Optional[List] = None) -> Panel:
    style = STATUS_STYLES[report.status]
    lines = [
        f"[bold {style}]{report.status.value.upper()}[/bold {style}]  {report.summary}",
        f"[dim]Active alerts: {report.active_alert_count}[/dim]",
    ]
    if report.last_check_time:
        lines.append(f"[dim]Last check: {report.last_check_time:%Y-%m-%d %H:%M:%S}[/dim]")
    for alert in alerts or []:
        alert_style = SEVERITY_STYLES[alert.severity]
        lines.append(f"[{alert_style}]• {alert.title}[/{alert_style}]: {alert.description}")
    return Panel("\n".join(lines), title="[bold blue]Database Health[/bold blue]", border_style=style)


def slow_query_table(report: SlowQueryReport) -> Table:
    table = Table(title=f"Slow Queries (> {report.threshold_ms:.0f} ms)")
    table.add_column("Avg (s)", style="yellow", justify="right")
    table.add_column("Max (s)", style="red", justify="right")
    table.add_column("Count", justify="right")
    table.add_column("Statement", style="white", overflow="fold")
    for query in report.queries:
        table.add_row(
            f"{query.average_time:.3f}", f"{query.max_time:.3f}", str(query.count), query.query
        )
    return table


def table_health_table(analysis: ComprehensiveAnalysis) -> Table:
    table = Table(title="Table Health")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right")
    table.add_column("Fragmentation", justify="right")
    table.add_column("Recommendations", style="yellow")
    for entry in analysis.tables:
        table.add_row(
            entry.table_name,
            str(entry.row_count),
            f"{entry.fragmentation_ratio:.1f}%",
            "; ".join(entry.recommended_actions) or "[dim]-[/dim]",
        )
    return table


@app.callback()
def main(
    verbose: Optional[bool] = typer.Option(
        False,
        "--verbose",
        help="Enable verbose logging"
    ),
) -> None:
    """
    dbpulse - periodic health sampling, threshold alerts and scheduled analysis
    """
    setup_logging(logging.DEBUG if verbose else None)
    if verbose:
        logger.debug("Verbose logging enabled")


@app.command()
def version() -> None:
    """
    Show version and exit
    """
    console.print(
        f"[bold blue]{settings.APP_NAME}[/bold blue] version [green]{__version__}[/green] "
        f"[dim]({settings.ENVIRONMENT})[/dim]"
    )


@app.command()
def snapshot(
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Database URL (mysql+aiomysql://...)"),
    timeout: float = typer.Option(settings.DB_PROBE_TIMEOUT, "--timeout", help="Per-probe timeout in seconds"),
) -> None:
    """
    Collect one metrics snapshot and print it
    """
    resolved = _resolve_url(url)

    async def _run():
        source = _open_source(resolved)
        try:
            return await collect_snapshot(default_probes(source), timeout=timeout)
        finally:
            await source.close()

    result = asyncio.run(_run())
    console.print(snapshot_table(result.snapshot))
    for error in result.errors:
        console.print(f"[dim yellow]! {escape(str(error))}[/dim yellow]")


@app.command()
def analyze(
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Database URL (mysql+aiomysql://...)"),
    threshold_ms: float = typer.Option(
        settings.THRESHOLD_SLOW_QUERY_MS, "--threshold", "-t", help="Slow query threshold in ms"
    ),
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum slow statements to show"),
) -> None:
    """
    Run the slow query digest and table health analysis
    """
    resolved = _resolve_url(url)

    async def _run():
        source = _open_source(resolved)
        try:
            return await asyncio.gather(
                analyze_slow_queries(source, threshold_ms, limit),
                run_comprehensive_analysis(source),
            )
        finally:
            await source.close()

    report, analysis = asyncio.run(_run())

    if report.available:
        console.print(slow_query_table(report))
    else:
        console.print(f"[yellow]Slow query analysis unavailable:[/yellow] {escape(str(report.reason))}")
    console.print(table_health_table(analysis))
    console.print(f"[dim]Indexes inspected: {len(analysis.indexes)}[/dim]")
    for error in analysis.errors:
        console.print(f"[red]{escape(error)}[/red]")


@app.command()
def watch(
    url: Optional[str] = typer.Option(None, "--url", "-u", help="Database URL (mysql+aiomysql://...)"),
    interval: float = typer.Option(
        settings.DB_MONITORING_INTERVAL, "--interval", "-i", help="Collection interval in seconds"
    ),
) -> None:
    """
    Run the monitor and print health every interval until interrupted
    """
    resolved = _resolve_url(url)
    config = MonitoringConfig(
        **{**MonitoringConfig.from_settings().model_dump(), "collection_interval": interval}
    )

    async def _run():
        source = _open_source(resolved)
        try:
            async with DatabaseMonitor(source, config) as monitor:
                await monitor.collect_once()
                while True:
                    console.print(health_panel(
                        monitor.get_health_status(), monitor.get_active_alerts()
                    ))
                    await asyncio.sleep(config.collection_interval)
        finally:
            await source.close()

    console.print(f"[dim]Watching every {interval}s. Press Ctrl-C to stop.[/dim]")
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        console.print("\n[dim]Monitoring stopped by user[/dim]")


if __name__ == "__main__":
    app()
