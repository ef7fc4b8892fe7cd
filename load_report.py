"""
📊 Load Test Reporting
======================
Live table, console summary, JSON and Markdown reports for a finished run.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from health_monitor import HealthMonitor
from load_metrics import StatsCollector
from run_context import RunContext


class ReportFormat(Enum):
    JSON = "json"
    MARKDOWN = "markdown"
    CONSOLE = "console"


PASS_SUCCESS_RATE = 95.0
PASS_P99_MS = 5000.0
PASS_ERROR_RATE = 5.0


def pass_criteria(stats: StatsCollector) -> Dict[str, Any]:
    """Pass criteria with actual vs expected."""
    p99 = stats.latency_percentile(99)
    error_rate = 100 - stats.success_rate if stats.total_requests else 0
    return {
        "success_rate": {
            "expected": f">={PASS_SUCCESS_RATE:.0f}%",
            "actual": f"{stats.success_rate:.1f}%",
            "passed": stats.success_rate >= PASS_SUCCESS_RATE,
        },
        "p99_latency": {
            "expected": f"<={PASS_P99_MS:.0f}ms",
            "actual": f"{p99:.0f}ms",
            "passed": p99 <= PASS_P99_MS,
        },
        "error_rate": {
            "expected": f"<={PASS_ERROR_RATE:.0f}%",
            "actual": f"{error_rate:.1f}%",
            "passed": error_rate <= PASS_ERROR_RATE,
        },
    }


def run_passed(stats: StatsCollector) -> bool:
    return stats.total_requests > 0 and all(c["passed"] for c in pass_criteria(stats).values())


def build_report(
    ctx: RunContext,
    base_url: str,
    test_name: str = "E-Commerce Load Test",
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    report = {
        "test_name": test_name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "base_url": base_url,
        "metrics": ctx.stats.to_dict(),
        "health": ctx.health.to_dict(),
        "gates": ctx.gate_stats(),
        "test_passed": run_passed(ctx.stats),
        "pass_criteria": pass_criteria(ctx.stats),
    }
    if extra:
        report.update(extra)
    return report


def render_json(report: Dict[str, Any]) -> str:
    return json.dumps(report, indent=2, default=str)


def render_markdown(report: Dict[str, Any]) -> str:
    m = report["metrics"]
    s = m["summary"]
    lat = m["latency_ms"]

    endpoint_rows = "".join(
        f"| `{e['endpoint']}` | {e['ok']:,} | {e['fail']:,} | {e['success_rate_percent']:.1f}% "
        f"| {e['p50_ms']:.0f} | {e['p95_ms']:.0f} | {e['p99_ms']:.0f} |\n"
        for e in m["endpoints"]
    )
    failure_rows = "".join(
        f"| {kind} | {count:,} |\n"
        for kind, count in sorted(m["failure_kinds"].items(), key=lambda kv: kv[1], reverse=True)
    ) or "| - | 0 |\n"
    samples = "".join(
        f"- `{e['endpoint']}`: {sample}\n"
        for e in m["endpoints"]
        for sample in e["error_samples"]
    ) or "_No errors recorded._\n"
    criteria = "".join(
        f"- {name.replace('_', ' ').title()}: {c['expected']} (Actual: {c['actual']}) "
        f"{'✅' if c['passed'] else '❌'}\n"
        for name, c in report["pass_criteria"].items()
    )

    return f"""# 📊 {report['test_name']}

**Target:** `{report['base_url']}`
**Generated:** {report['timestamp']}

---

## Summary

| Metric | Value |
|--------|-------|
| Total Requests | {s['total_requests']:,} |
| Successful | {s['successful_requests']:,} |
| Failed | {s['failed_requests']:,} |
| Success Rate | {s['success_rate_percent']:.2f}% |
| Duration | {s['duration_seconds']:.2f}s |
| Requests/Second | {s['requests_per_second']:,.2f} |
| Backoff Trips | {report['health']['backoff_trips']:,} |

## Latency (ms)

| Percentile | All | Success only |
|------------|-----|--------------|
| P50 | {lat['p50']:.2f} | {lat['success_p50']:.2f} |
| P95 | {lat['p95']:.2f} | {lat['success_p95']:.2f} |
| P99 | {lat['p99']:.2f} | {lat['success_p99']:.2f} |
| Average | {lat['average']:.2f} | - |

## Endpoints

| Endpoint | OK | Fail | Success | P50 | P95 | P99 |
|----------|----|------|---------|-----|-----|-----|
{endpoint_rows}
## Failure Kinds

| Kind | Count |
|------|-------|
{failure_rows}
## Error Samples

{samples}
## Test Result

**Status:** {'✅ **PASSED**' if report['test_passed'] else '❌ **FAILED**'}

{criteria}"""


def write_report(report: Dict[str, Any], fmt: ReportFormat, output_path: Optional[str], console: Console) -> str:
    """Render a report and optionally save it to disk."""
    text = render_markdown(report) if fmt == ReportFormat.MARKDOWN else render_json(report)
    if output_path:
        Path(output_path).write_text(text)
        console.print(f"[green]{fmt.value.title()} report saved to: {output_path}[/green]")
    else:
        console.print(text, markup=False, highlight=False)
    return text


# =============================================================================
# CONSOLE
# =============================================================================

def create_metrics_table(stats: StatsCollector, health: HealthMonitor, ctx: Optional[RunContext] = None) -> Table:
    """Rich table for the live display."""
    table = Table(title="🛒 E-Commerce Load Test Metrics", expand=True)
    table.add_column("Metric", style="cyan", width=22)
    table.add_column("Value", style="green", width=15)
    table.add_column("Metric", style="cyan", width=22)
    table.add_column("Value", style="green", width=15)

    table.add_row(
        "Total Requests", f"{stats.total_requests:,}",
        "RPS", f"{stats.rps:,.1f}",
    )
    table.add_row(
        "Successful", f"[green]{stats.successful_requests:,}[/green]",
        "Failed", f"[red]{stats.failed_requests:,}[/red]",
    )
    table.add_row(
        "P95 Latency", f"{stats.latency_percentile(95):.0f}ms",
        "P99 Latency", f"{stats.latency_percentile(99):.0f}ms",
    )
    state = "[red]BACKING OFF[/red]" if health.is_degraded() else "[green]healthy[/green]"
    table.add_row(
        "Target State", state,
        "Backoff Trips", f"{health.backoff_trips:,}",
    )
    if ctx is not None:
        table.add_row(
            "In Flight", f"{ctx.gate.holders}/{ctx.gate.max_permits}",
            "Queued", f"{ctx.gate.waiting:,}",
        )
    table.add_row("Duration", f"{stats.duration:.1f}s", "", "")
    return table


def create_endpoint_table(stats: StatsCollector, limit: int = 15) -> Table:
    table = Table(title="Endpoints", expand=True)
    table.add_column("Endpoint", style="cyan")
    table.add_column("OK", justify="right")
    table.add_column("Fail", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("P50", justify="right")
    table.add_column("P95", justify="right")
    table.add_column("P99", justify="right")
    table.add_column("Sample error", style="dim", overflow="fold")

    for row in stats.endpoint_summary()[:limit]:
        rate = row["success_rate_percent"]
        color = "green" if rate >= 95 else "yellow" if rate >= 80 else "red"
        table.add_row(
            escape(row["endpoint"]),
            f"{row['ok']:,}",
            f"{row['fail']:,}",
            f"[{color}]{rate:.1f}%[/{color}]",
            f"{row['p50_ms']:.0f}ms",
            f"{row['p95_ms']:.0f}ms",
            f"{row['p99_ms']:.0f}ms",
            escape(row["error_samples"][-1]) if row["error_samples"] else "",
        )
    return table


def _format_failure_kinds(kinds: Dict[str, int]) -> str:
    if not kinds:
        return "  No failures recorded"
    lines: List[str] = []
    for kind, count in sorted(kinds.items(), key=lambda kv: kv[1], reverse=True):
        color = "yellow" if kind == "HTTP_429" else "red"
        lines.append(f"  [{color}]{kind}[/{color}]: {count:,}")
    return "\n".join(lines)


def print_summary(console: Console, report: Dict[str, Any], stats: StatsCollector):
    """Print test summary to console."""
    s = report["metrics"]["summary"]
    lat = report["metrics"]["latency_ms"]
    passed = report["test_passed"]
    shop = report.get("shop", {})

    console.print("\n")
    console.print(Panel(
        f"""[bold]E-Commerce Load Test Summary[/bold]

[cyan]Logged-in Users:[/cyan]    {report.get('logged_in_users', 0):,}
[cyan]Total Requests:[/cyan]     {s['total_requests']:,}
[green]Successful:[/green]         {s['successful_requests']:,} ({s['success_rate_percent']:.1f}%)
[red]Failed:[/red]             {s['failed_requests']:,}
[cyan]Duration:[/cyan]           {s['duration_seconds']:.2f}s
[cyan]Throughput:[/cyan]         {s['requests_per_second']:,.1f} req/s

[bold]Latency (ms):[/bold]
  Average:  {lat['average']:.2f}
  P50:      {lat['p50']:.2f}
  P95:      {lat['p95']:.2f}
  P99:      {lat['p99']:.2f}

[bold]Self-protection:[/bold]
  Backoff Trips:      {report['health']['backoff_trips']:,}
  Degrade Signals:    {report['health']['total_signals']:,}
  Peak In Flight:     {report['gates']['global']['peak_holders']:,}

[bold]Checkout:[/bold]
  Attempted:          {shop.get('checkouts_attempted', 0):,}
  Verified:           {shop.get('checkouts_verified', 0):,}
  Orders Placed:      {shop.get('orders_placed', 0):,}

[bold]Failure Kinds:[/bold]
{_format_failure_kinds(report['metrics']['failure_kinds'])}

[bold]Test Result:[/bold] {'[green]✓ PASSED[/green]' if passed else '[red]✗ FAILED[/red]'}
""",
        title="📊 Final Results",
        border_style="green" if passed else "red",
    ))
    console.print(create_endpoint_table(stats))
