#!/usr/bin/env python3
"""
🎯 Preset Load Test Scenarios
=============================
Pre-configured runs from a quick smoke check to a deliberate meltdown.

Usage:
    python run_presets.py https://api.example.com/api/v1 smoke
    python run_presets.py https://api.example.com/api/v1 peak --report markdown
    python run_presets.py https://api.example.com/api/v1 meltdown --i-know-what-im-doing
"""

import asyncio
import sys
from typing import Any, Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from ecommerce_load_test import LoadTestConfig, run_and_report, setup_logging
from load_report import ReportFormat

console = Console()

# =============================================================================
# PRESET CONFIGURATIONS
# =============================================================================

PRESETS: Dict[str, Dict[str, Any]] = {
    "smoke": {
        "name": "🌱 Smoke Check",
        "description": "A handful of users for one minute to verify the API answers",
        "params": {
            "total_users": 10,
            "duration_seconds": 60,
            "max_concurrency": 20,
        },
    },
    "baseline": {
        "name": "🏃 Baseline",
        "description": "100 users for 5 minutes, normal think-time",
        "params": {
            "total_users": 100,
            "duration_seconds": 300,
            "max_concurrency": 100,
        },
    },
    "peak": {
        "name": "🏋️ Peak Hour",
        "description": "500 users for 5 minutes (production load script defaults)",
        "params": {
            "total_users": 500,
            "duration_seconds": 300,
            "max_concurrency": 200,
        },
    },
    "soak": {
        "name": "🏃‍♂️ Soak",
        "description": "300 users for 30 minutes to surface leaks and pool exhaustion",
        "params": {
            "total_users": 300,
            "duration_seconds": 1800,
            "max_concurrency": 150,
        },
    },
    "meltdown": {
        "name": "☢️ Meltdown",
        "description": "1000 users, almost no think-time, tight timeouts, backoff effectively disabled",
        "params": {
            "total_users": 1000,
            "duration_seconds": 120,
            "max_concurrency": 1000,
            "connection_limit": 1000,
            "request_timeout": 5.0,
            "think_time": (0.0, 0.05),
            "health_threshold": 100000,
        },
        "dangerous": True,
    },
}


def print_presets():
    """Print all available presets."""
    console.print("\n[bold]Available Presets:[/bold]\n")
    for name, preset in PRESETS.items():
        danger_flag = "[red]⚠️ DANGEROUS[/red] " if preset.get("dangerous") else ""
        console.print(f"  [cyan]{name:<10}[/cyan] {preset['name']:<18} {danger_flag}- {preset['description']}")
    console.print("")


def build_config(url: str, preset_name: str) -> LoadTestConfig:
    config = LoadTestConfig.from_dict(PRESETS[preset_name]["params"]).apply_env()
    config.base_url = url
    return config


async def run_preset(
    url: str,
    preset_name: str,
    dangerous_confirmed: bool = False,
    report_format: str = "console",
    output_path: Optional[str] = None,
) -> bool:
    """Run a preset scenario."""
    if preset_name not in PRESETS:
        console.print(f"[red]Unknown preset: {preset_name}[/red]")
        print_presets()
        return False

    preset = PRESETS[preset_name]

    # Safety check for dangerous presets
    if preset.get("dangerous") and not dangerous_confirmed:
        console.print(Panel(
            f"[bold red]⚠️  WARNING: {preset['name']} is DANGEROUS![/bold red]\n\n"
            f"{preset['description']}\n\n"
            f"This can overwhelm servers and potentially cause:\n"
            f"  • Service outages\n"
            f"  • Rate limiting/IP bans\n"
            f"  • Resource exhaustion\n\n"
            f"[yellow]Only use on systems you own or have permission to test![/yellow]",
            title="⚠️ Dangerous Preset",
            border_style="red",
        ))
        if not Confirm.ask("Do you want to proceed?"):
            console.print("[dim]Cancelled.[/dim]")
            return False

    console.print(Panel(
        f"[bold]{preset['name']}[/bold]\n\n{preset['description']}",
        title=f"Running Preset: {preset_name}",
        border_style="blue",
    ))

    return await run_and_report(
        build_config(url, preset_name),
        ReportFormat(report_format),
        output_path,
        test_name=f"{preset['name']} - {preset_name}",
    )


REPORT_CHOICES = [f.value for f in ReportFormat]


def print_usage():
    console.print("[bold]Usage:[/bold] python run_presets.py <BASE_URL> [PRESET] [--i-know-what-im-doing] "
                  f"[--report {'|'.join(REPORT_CHOICES)}] [--output PATH]")
    print_presets()


def main():
    if len(sys.argv) < 2:
        print_usage()
        return

    if len(sys.argv) == 2:
        if sys.argv[1] in ["--help", "-h", "help"]:
            print_presets()
            return
        console.print("[red]Please provide both base URL and preset name[/red]")
        print_presets()
        return

    url = sys.argv[1]
    preset = sys.argv[2]
    dangerous_confirmed = "--i-know-what-im-doing" in sys.argv

    report_format = "console"
    output_path = None
    for i, arg in enumerate(sys.argv):
        if arg == "--report" and i + 1 < len(sys.argv):
            report_format = sys.argv[i + 1]
        elif arg in ("--output", "-o") and i + 1 < len(sys.argv):
            output_path = sys.argv[i + 1]

    if report_format not in REPORT_CHOICES:
        console.print(f"[red]Unknown report format: {report_format}[/red]")
        print_usage()
        sys.exit(1)

    setup_logging()
    passed = asyncio.run(run_preset(url, preset, dangerous_confirmed, report_format, output_path))
    sys.exit(0 if passed else 1)


if __name__ == "__main__":
    main()
