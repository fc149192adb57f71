#!/usr/bin/env python3
"""
Aegrid Resilience v1.0 - State Machine Status Monitor
Real-time dashboard using Rich UI library
Usage: resilience-status  OR  python3 resilience_status.py
"""

import datetime
import os
import time

import psutil
import requests
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

console = Console()

RESILIENCE_HOME = os.environ.get("RESILIENCE_HOME", os.path.expanduser("~"))
API_URL         = os.environ.get("RESILIENCE_API", "http://localhost:11450")
REFRESH_SECONDS = 30

MODE_COLORS = {
    "NORMAL":      "green",
    "ELEVATED":    "yellow",
    "HIGH_STRESS": "dark_orange",
    "EMERGENCY":   "red",
}


def color(p):
    return "green" if p < 60 else ("yellow" if p < 80 else "red")


class ResilienceMonitor:
    """Polls the resilience API and renders engine state"""

    def __init__(self, api_url=API_URL):
        self.api_url = api_url.rstrip("/")
        self.start_time = datetime.datetime.now()

    def api_health(self):
        try:
            r = requests.get(f"{self.api_url}/health", timeout=2)
            data = r.json()
            return {"status": "✓ Running", "color": "green",
                    "uptime": data.get("uptime", 0), "version": data.get("version", "?")}
        except (requests.RequestException, ValueError):
            return {"status": "✗ Offline", "color": "red", "uptime": 0, "version": "?"}

    def engine_status(self):
        """Return the /resilience/status payload, or None when unreachable."""
        try:
            r = requests.get(f"{self.api_url}/resilience/status", timeout=2)
            r.raise_for_status()
            body = r.json()
        except (requests.RequestException, ValueError):
            return None
        data  = body.get("data", {})
        state = body.get("state", {})
        return {
            "operational":    data.get("operational", False),
            "mode":           data.get("mode", "?"),
            "mode_color":     MODE_COLORS.get(data.get("mode"), "white"),
            "health":         data.get("health_score", 0.0),
            "utilization":    data.get("margin_utilization", 0.0),
            "antifragile":    data.get("antifragile_score", 0.0),
            "active_signals": data.get("active_signals_count", 0),
            "level":          state.get("resilience_level", 0.0),
            "margins":        state.get("margin_allocation", {}),
        }

    def resources(self):
        """Host load as percentages; disk is None when no path can be read."""
        disk = None
        for path in (RESILIENCE_HOME, "/"):
            try:
                disk = psutil.disk_usage(path).percent
                break
            except OSError:
                continue
        return {
            "cpu":  psutil.cpu_percent(interval=None),
            "mem":  psutil.virtual_memory().percent,
            "disk": disk,
        }

    def host_line(self):
        line = Text("Host  ", style="white")
        for label, pct in self.resources().items():
            if pct is None:
                line.append(f"{label} n/a  ", style="dim")
            else:
                line.append(f"{label} {pct:.0f}%  ", style=color(pct))
        return line

    def render(self):
        console.clear()
        console.print(Panel(
            "[bold cyan]AEGRID RESILIENCE v1.0 — STATE MACHINE MONITOR[/bold cyan]",
            border_style="cyan", padding=(0, 2)
        ))

        h = self.api_health()
        st = self.engine_status()

        # Engine summary
        if st is None:
            summary = Text(f"⚠ Resilience API unreachable at {self.api_url}", style="yellow")
        else:
            summary = Text()
            summary.append("Mode: ", style="white")
            summary.append(st["mode"], style=f"bold {st['mode_color']}")
            summary.append(f"  |  Level: {st['level']:.0f}", style="cyan")
            summary.append(f"  |  Health: {st['health']:.1f}", style=color(100 - st["health"]))
            summary.append(f"  |  Antifragile: {st['antifragile']:.1f}", style="magenta")
            summary.append(f"  |  Active signals: {st['active_signals']}", style="dim")
        summary.append("\n")
        summary.append_text(self.host_line())
        console.print(Panel(summary, border_style="cyan",
                            title=f"[bold blue]Engine[/bold blue] [{h['color']}]{h['status']}[/{h['color']}]"))

        # Margin pools
        if st is not None and st["margins"]:
            t = Table(title="[bold blue]Margin Pools[/bold blue]", expand=True)
            t.add_column("Type", style="cyan", min_width=12)
            t.add_column("Allocated", justify="right")
            t.add_column("Available", justify="right")
            t.add_column("Total", justify="right")
            t.add_column("Utilization", min_width=10)
            for name, m in sorted(st["margins"].items()):
                pct = m.get("utilization_rate", 0.0) * 100
                t.add_row(name, f"{m.get('allocated_margin', 0):.1f}",
                          f"{m.get('available_margin', 0):.1f}", f"{m.get('total_margin', 0):.1f}",
                          f"[{color(pct)}]{pct:.1f}%[/{color(pct)}]")
            console.print(t)
            console.print()

        ts = datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        console.print(f"\n[dim]Updated: {ts}  |  Refresh {REFRESH_SECONDS}s  |  Ctrl+C to exit[/dim]")


def main():
    monitor = ResilienceMonitor()
    try:
        while True:
            monitor.render()
            time.sleep(REFRESH_SECONDS)
    except KeyboardInterrupt:
        console.print("\n[yellow]Monitor stopped.[/yellow]")


if __name__ == "__main__":
    main()
