"""Console rendering of sync results and analyses."""

import json
from typing import Dict, Optional

from rich.console import Console
from rich.table import Table

from .analyzer import Analysis, RiskLevel, SecurityStats, UpdatePattern
from .models import Statistics

console = Console()


def print_analysis_json(analysis: Analysis, out: Optional[Console] = None) -> None:
    out = out or console
    out.print_json(json.dumps(analysis.model_dump(mode="json")))


def _risk_table(title: str, stats: Dict[RiskLevel, SecurityStats]) -> Table:
    table = Table(title=title, title_justify="left")
    table.add_column("Risk")
    table.add_column("Devices", justify="right")
    table.add_column("Description")
    table.add_column("Affected devices", overflow="fold")
    for level in (RiskLevel.HIGH, RiskLevel.MEDIUM, RiskLevel.LOW):
        stat = stats[level]
        if stat.count > 0:
            table.add_row(level.value, str(stat.count), stat.description, ", ".join(stat.affected_devices))
    return table


def _pattern_lines(name: str, pattern: Optional[UpdatePattern]) -> str:
    if pattern is None:
        return ""
    return (
        f"\n[bold]{name} Update Patterns:[/bold]\n"
        f"- Update Timespan: {pattern.update_timespan} months\n"
        f"- Average Update Frequency: {pattern.update_frequency:.1f} months\n"
        f"- Compliance Rate: {pattern.compliance_metrics.compliance_rate:.1f}%"
    )


def print_basic_stats(analysis: Analysis, out: Optional[Console] = None) -> None:
    out = out or console
    out.print("\n[bold]Device Statistics:[/bold]")
    out.print(_risk_table("Android Security Risks", analysis.security_stats.android))
    out.print(_risk_table("iOS Security Risks", analysis.security_stats.ios))
    for name, pattern in (("Android", analysis.update_patterns.android), ("iOS", analysis.update_patterns.ios)):
        lines = _pattern_lines(name, pattern)
        if lines:
            out.print(lines)


def print_statistics(stats: Statistics, out: Optional[Console] = None) -> None:
    out = out or console
    table = Table(title="Cache Summary", title_justify="left")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Total devices", str(stats.total_devices))
    table.add_row("Active", str(stats.active_devices))
    table.add_row("Android", str(stats.android_devices))
    table.add_row("iOS", str(stats.ios_devices))
    table.add_row("Parents", str(stats.parent_devices))
    table.add_row("Children", str(stats.child_devices))
    table.add_row("Vulnerable", str(stats.vulnerable_devices))
    out.print(table)
