#!/usr/bin/env python3
"""Spark Profile Analyzer - Minecraft server health diagnostics.

Reads a spark profiler report (viewer URL, bare code, or raw JSON export) and prints:
- Overall health score (0-100)
- TPS, MSPT, CPU, memory and entity status
- Detected problems tagged by severity
- Prioritized fixes with step-by-step actions
- Entity distribution and server information
- Optional Markdown and JSON export
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from spark_analyze.analyzer import analyze as analyze_snapshot
from spark_analyze.loader import LoadedSnapshot, LoaderSettings, load_snapshot
from spark_analyze.models import (
    AnalysisResult,
    Issue,
    MemoryPool,
    MetricStatus,
    Recommendation,
    Snapshot,
)

__version__ = "1.0.0"

ENTITY_CHART_LIMIT = 8

# ============================================================
# FORMATTING HELPERS
# ============================================================


def format_bytes(size_bytes: float) -> str:
    """Format bytes with 1024-based units."""
    sizes = ["B", "KB", "MB", "GB", "TB"]
    if size_bytes <= 0:
        return "0 B"
    value = float(size_bytes)
    index = 0
    while value >= 1024 and index < len(sizes) - 1:
        value /= 1024
        index += 1
    return f"{value:.2f} {sizes[index]}"


def format_number(value: int) -> str:
    return f"{value:,}"


def format_percentage(value: float) -> str:
    return f"{value:.1f}%"


def score_style(score: int) -> str:
    """Map a health score onto a color band."""
    if score >= 80:
        return "green"
    if score >= 60:
        return "yellow"
    if score >= 40:
        return "dark_orange"
    return "red"


def score_verdict(score: int) -> str:
    if score >= 80:
        return "Looking good! Your server is running smooth."
    if score >= 60:
        return "Not bad, but there's room to make it better."
    if score >= 40:
        return "Some issues here. You should probably fix these."
    return "Yikes. Your server needs help ASAP."


STATUS_STYLES: dict[MetricStatus, str] = {
    "good": "success",
    "warning": "warning",
    "critical": "critical",
}

SEVERITY_STYLES = {"critical": "critical", "warning": "warning", "info": "info"}
PRIORITY_STYLES = {"high": "critical", "medium": "warning", "low": "info"}


# ============================================================
# REPORT ROWS
# ============================================================


def _heap_pool(snapshot: Snapshot) -> MemoryPool | None:
    """Heap pool from platform statistics, else from system statistics."""
    platform_stats = snapshot.platform_statistics
    if platform_stats and platform_stats.memory and platform_stats.memory.heap:
        return platform_stats.memory.heap
    system_memory = snapshot.system_statistics.memory
    return system_memory.heap if system_memory else None


def build_key_metric_rows(
    result: AnalysisResult, snapshot: Snapshot
) -> list[tuple[str, str, str, MetricStatus]]:
    """Rows of (label, value, detail, status) for the key metrics."""
    metrics = result.metrics
    heap = _heap_pool(snapshot)
    heap_used = (heap.used or 0) if heap else 0
    return [
        ("TPS", f"{metrics.performance.tps.value:.2f}", "/20.0", metrics.performance.tps.status),
        ("MSPT", f"{metrics.performance.mspt.value:.1f}", "ms", metrics.performance.mspt.status),
        (
            "Memory",
            format_percentage(metrics.memory.usage),
            format_bytes(heap_used),
            metrics.memory.status,
        ),
        ("Entities", format_number(metrics.entities.total), "total", metrics.entities.status),
    ]


def build_entity_distribution_rows(
    snapshot: Snapshot, limit: int = ENTITY_CHART_LIMIT
) -> list[tuple[str, int]]:
    """Most common entity types, highest count first."""
    world_stats = snapshot.world_statistics
    if world_stats is None:
        return []
    ranked = sorted(world_stats.entities.items(), key=lambda item: item[1], reverse=True)
    return ranked[:limit]


def build_server_info_rows(snapshot: Snapshot) -> list[tuple[str, str]]:
    """Platform, Java and capacity details, "N/A" when missing."""
    stats = snapshot.system_statistics
    platform = snapshot.metadata.platform if snapshot.metadata else None
    platform_stats = snapshot.platform_statistics

    platform_text = "N/A"
    if platform and (platform.name or platform.version):
        platform_text = " ".join(part for part in (platform.name, platform.version) if part)

    java_text = "N/A"
    if stats.java:
        java_text = " ".join(part for part in (stats.java.vendor, stats.java.version) if part)

    heap = _heap_pool(snapshot)
    total_memory = (heap.max or 0) if heap else 0

    player_count = (platform_stats.player_count if platform_stats else None) or stats.player_count

    return [
        ("Platform", platform_text),
        ("Minecraft", (platform.minecraft_version if platform else None) or "N/A"),
        ("Java", java_text or "N/A"),
        ("CPU Threads", str(stats.cpu.threads) if stats.cpu and stats.cpu.threads else "N/A"),
        ("Total Memory", format_bytes(total_memory)),
        ("Player Count", str(player_count) if player_count else "N/A"),
    ]


def determine_exit_code(result: AnalysisResult) -> int:
    """0 = clean, 1 = warnings, 2 = critical issues."""
    if result.critical_count > 0:
        return 2
    if result.warning_count > 0:
        return 1
    return 0


# ============================================================
# RICH OUTPUT RENDERING
# ============================================================

SPARK_ANALYZE_THEME = Theme(
    {
        "critical": "bold red",
        "warning": "bold yellow",
        "success": "bold green",
        "info": "cyan",
        "metric": "white",
        "label": "dim white",
        "header": "bold magenta",
    }
)

console = Console(theme=SPARK_ANALYZE_THEME)
err_console = Console(theme=SPARK_ANALYZE_THEME, stderr=True)


def create_key_value_table(title: str, rows: list[tuple[str, str]]) -> Table:
    """Create a simple two-column key/value table."""
    table = Table(title=title, show_header=False, box=None, padding=(0, 2))
    table.add_column("Metric", style="label")
    table.add_column("Value", style="metric")
    for label, value in rows:
        table.add_row(label, value)
    return table


def render_score_panel(result: AnalysisResult) -> Panel:
    color = score_style(result.overall_score)
    content = Text(justify="center")
    content.append(f"{result.overall_score}", style=f"bold {color}")
    content.append(" / 100\n", style="label")
    content.append(score_verdict(result.overall_score), style="metric")
    return Panel(content, title="Server Health Score", border_style=color)


def create_key_metrics_table(result: AnalysisResult, snapshot: Snapshot) -> Table:
    table = Table(title="Key Metrics", show_header=True, header_style="header")
    table.add_column("Metric", style="info")
    table.add_column("Value", justify="right", style="metric")
    table.add_column("Detail", style="label")
    table.add_column("Status", justify="center")
    for label, value, detail, status in build_key_metric_rows(result, snapshot):
        table.add_row(label, value, detail, Text(status.upper(), style=STATUS_STYLES[status]))
    return table


def render_issue(issue: Issue) -> Panel:
    style = SEVERITY_STYLES[issue.severity]
    content = Text()
    content.append(f"{issue.description}\n")
    content.append("Impact: ", style="label")
    content.append(issue.impact)
    return Panel(
        content,
        title=f"[{style}]{issue.severity.upper()}[/{style}] {issue.title}",
        subtitle=issue.category,
        border_style=style,
    )


def render_recommendation(recommendation: Recommendation) -> Panel:
    style = PRIORITY_STYLES[recommendation.priority]
    content = Text()
    content.append(f"{recommendation.description}\n")
    content.append("Expected: ", style="label")
    content.append(recommendation.expected_improvement, style="success")
    if recommendation.steps:
        content.append("\n\nSteps to fix:", style="label")
        for number, step in enumerate(recommendation.steps, start=1):
            content.append(f"\n  {number}. {step}")
    return Panel(
        content,
        title=(
            f"[{style}]{recommendation.priority.upper()} PRIORITY[/{style}] "
            f"{recommendation.title}"
        ),
        subtitle=recommendation.category,
        border_style=style,
    )


def create_entity_distribution_table(rows: list[tuple[str, int]]) -> Table:
    table = Table(title="Entity Distribution", show_header=True, header_style="header")
    table.add_column("Entity Type", style="info")
    table.add_column("Count", justify="right", style="metric")
    table.add_column("", style="info")
    peak = rows[0][1] if rows else 0
    for entity_type, count in rows:
        width = round(count / peak * 30) if peak else 0
        table.add_row(Text(entity_type), format_number(count), "█" * width)
    return table


def render_rich_output(loaded: LoadedSnapshot, result: AnalysisResult) -> None:
    """Render the full report using Rich components."""
    snapshot = loaded.snapshot

    console.print()
    console.print(Panel(f"Spark Profile: {escape(loaded.source)}", style="header", expand=True))
    console.print()

    console.print(render_score_panel(result))
    console.print()

    console.print(create_key_metrics_table(result, snapshot))
    console.print()

    if result.issues:
        console.print(f"[header]Problems Found ({len(result.issues)})[/header]")
        for issue in result.issues:
            console.print(render_issue(issue))
        console.print()
    else:
        console.print(
            Panel(Text(" No problems detected", style="success"), border_style="green")
        )
        console.print()

    if result.recommendations:
        console.print(f"[header]How to Fix ({len(result.recommendations)})[/header]")
        for recommendation in result.recommendations:
            console.print(render_recommendation(recommendation))
        console.print()

    entity_rows = build_entity_distribution_rows(snapshot)
    if entity_rows:
        console.print(create_entity_distribution_table(entity_rows))
        console.print()

    console.print(create_key_value_table("Server Information", build_server_info_rows(snapshot)))


# ============================================================
# MARKDOWN EXPORT
# ============================================================


def export_markdown_summary(
    loaded: LoadedSnapshot, result: AnalysisResult, output_path: Path
) -> None:
    """Export the report to Markdown format."""
    snapshot = loaded.snapshot
    md_content: list[str] = []

    md_content.append("# Spark Profile Analysis Report\n\n")
    md_content.append(f"**Generated:** {datetime.now().isoformat()}\n\n")
    md_content.append(f"**Source:** {loaded.source}\n\n")

    md_content.append("## Health Score\n\n")
    md_content.append(f"**{result.overall_score}/100** - {score_verdict(result.overall_score)}\n\n")

    md_content.append("## Key Metrics\n\n")
    md_content.append("| Metric | Value | Detail | Status |\n")
    md_content.append("|--------|-------|--------|--------|\n")
    for label, value, detail, status in build_key_metric_rows(result, snapshot):
        md_content.append(f"| {label} | {value} | {detail} | {status.upper()} |\n")
    md_content.append("\n")

    md_content.append(f"## Problems Found ({len(result.issues)})\n\n")
    if not result.issues:
        md_content.append("No problems detected.\n\n")
    for issue in result.issues:
        md_content.append(f"### [{issue.severity.upper()}] {issue.title}\n\n")
        md_content.append(f"- **Category:** {issue.category}\n")
        md_content.append(f"- **Description:** {issue.description}\n")
        md_content.append(f"- **Impact:** {issue.impact}\n\n")

    md_content.append(f"## How to Fix ({len(result.recommendations)})\n\n")
    for recommendation in result.recommendations:
        md_content.append(
            f"### [{recommendation.priority.upper()} PRIORITY] {recommendation.title}\n\n"
        )
        md_content.append(f"{recommendation.description}\n\n")
        md_content.append(f"**Expected:** {recommendation.expected_improvement}\n\n")
        if recommendation.steps:
            for number, step in enumerate(recommendation.steps, start=1):
                md_content.append(f"{number}. {step}\n")
            md_content.append("\n")

    entity_rows = build_entity_distribution_rows(snapshot)
    if entity_rows:
        md_content.append("## Entity Distribution\n\n")
        md_content.append("| Entity Type | Count |\n")
        md_content.append("|-------------|-------|\n")
        for entity_type, count in entity_rows:
            md_content.append(f"| {entity_type} | {format_number(count)} |\n")
        md_content.append("\n")

    md_content.append("## Server Information\n\n")
    for label, value in build_server_info_rows(snapshot):
        md_content.append(f"- **{label}:** {value}\n")

    output_path.write_text("".join(md_content), encoding="utf-8")


# ============================================================
# TYPER CLI INTERFACE
# ============================================================

app = typer.Typer(
    name="spark-analyze",
    help="Health diagnostics for spark profiler reports",
    add_completion=False,
    rich_markup_mode="rich",
)


@app.command()
def analyze(
    source: Annotated[
        str,
        typer.Argument(
            help="Spark viewer URL (https://spark.lucko.me/XXXXX), profile code, "
            "or path to a raw JSON export",
        ),
    ],
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Export analysis report to Markdown file (e.g., report.md)",
            file_okay=True,
            dir_okay=False,
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Print the analysis result as JSON instead of the rich report",
        ),
    ] = False,
    timeout: Annotated[
        float,
        typer.Option(
            "--timeout",
            help="HTTP timeout in seconds for each fetch attempt",
            min=0.1,
            envvar="SPARK_ANALYZE_TIMEOUT",
        ),
    ] = 15.0,
    proxy_url: Annotated[
        str,
        typer.Option(
            "--proxy-url",
            help="Fallback proxy URL template; {url} is replaced by the encoded raw URL",
            envvar="SPARK_ANALYZE_PROXY_URL",
        ),
    ] = "https://corsproxy.io/?{url}",
    no_proxy: Annotated[
        bool,
        typer.Option(
            "--no-proxy",
            help="Do not retry through the proxy when the direct fetch fails",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable verbose output with details about loading",
        ),
    ] = False,
) -> None:
    """Analyze a spark profiler report.

    Exit codes: 0 = clean, 1 = warnings, 2 = critical issues.
    """
    settings = LoaderSettings(
        proxy_url_template=proxy_url,
        use_proxy_fallback=not no_proxy,
        timeout_seconds=timeout,
    )

    try:
        if verbose:
            err_console.print(f"[info]Resolving {source}[/info]")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=err_console,
            transient=True,
        ) as progress:
            progress.add_task("[cyan]Loading spark profile...", total=None)
            loaded = load_snapshot(source, settings)

        if verbose:
            via = " via proxy fallback" if loaded.via_proxy else ""
            err_console.print(f"[info]Loaded profile from {loaded.source}{via}[/info]")
            world_stats = loaded.snapshot.world_statistics
            if world_stats is None:
                err_console.print(
                    "[info]No world statistics in profile; entity checks skipped[/info]"
                )
            else:
                err_console.print(
                    f"[info]{len(world_stats.worlds)} worlds, "
                    f"{format_number(world_stats.total_entities)} entities[/info]"
                )

        result = analyze_snapshot(loaded.snapshot)

        if json_output:
            typer.echo(result.model_dump_json(by_alias=True, indent=2))
        else:
            render_rich_output(loaded, result)

        if output:
            export_markdown_summary(loaded, result, output)
            err_console.print(f"\n[success] Summary exported to {output}[/success]")

        exit_code = determine_exit_code(result)
        if exit_code:
            sys.exit(exit_code)

    except ValueError as e:
        err_console.print(f"[critical]ERROR: {escape(str(e))}[/critical]")
        sys.exit(1)
    except Exception as e:
        err_console.print(f"[critical]ERROR: {escape(str(e))}[/critical]")
        if verbose:
            err_console.print_exception()
        sys.exit(1)


@app.command()
def version() -> None:
    """Display version."""
    console.print(f"spark-analyze {__version__}")


if __name__ == "__main__":
    app()
