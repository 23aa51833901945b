from typing import Dict, List, Optional
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.text import Text

from smart_break.models.stats import AggregatedStats, DayStats

STATE_STYLES = {
    "idle": ("⏸", "dim"),
    "running": ("💻", "green"),
    "pre_break_warning": ("⏳", "yellow"),
    "on_break": ("☕", "cyan"),
    "externally_paused": ("🔕", "magenta"),
}


def format_seconds(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    return f"{minutes:02d}:{secs:02d}"


class TerminalDisplay:
    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def show_status(self, timer_status: Dict, decision: Optional[Dict] = None):
        """Timer state plus the current smart pause decision"""
        state = timer_status["state"]
        emoji, style = STATE_STYLES.get(state, ("❓", "white"))

        header = Text()
        header.append(f"{emoji} {state.replace('_', ' ').title()}", style=f"bold {style}")
        if state != "idle":
            header.append(f"  {format_seconds(timer_status['remaining_seconds'])} left", style="dim")
        if timer_status.get("pause_reason"):
            header.append(f"\nPaused: {timer_status['pause_reason'].replace('_', ' ')}", style="magenta")
        self.console.print(Panel(header, title="Smart Break", expand=False))

        if decision:
            table = Table(title="Pause Signals")
            table.add_column("Signal", style="cyan")
            table.add_column("Weight", justify="right")
            for signal in decision["active_signals"]:
                table.add_row(signal["description"], str(signal["weight"]))
            verdict = "[red]hold breaks[/red]" if decision["should_pause"] else "[green]no pause[/green]"
            table.caption = f"Total weight {decision['total_weight']} → {verdict}"
            self.console.print(table)

    def show_stats(self, stats: AggregatedStats, today: Optional[DayStats] = None):
        table = Table(title=f"Statistics ({stats.period.value})")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right", style="green")

        table.add_row("Breaks completed", str(stats.breaks_completed))
        table.add_row("Breaks skipped", str(stats.breaks_skipped))
        table.add_row("Break minutes", str(stats.total_break_minutes))
        table.add_row("Completion rate", f"{stats.completion_rate:.0f}%")
        table.add_row("Average score", f"{stats.average_score:.0f}")
        table.add_row("Days tracked", str(stats.days_tracked))
        table.add_row("Streak", f"{stats.streak} days")
        table.add_row("Trend", stats.trend.value)
        if stats.meeting_minutes:
            table.add_row("Meeting minutes", str(stats.meeting_minutes))
        self.console.print(table)

        if today is not None and today.pause_counts_by_reason:
            pauses = Table(title="Pauses today")
            pauses.add_column("Reason", style="magenta")
            pauses.add_column("Count", justify="right")
            pauses.add_column("Minutes", justify="right")
            for reason, count in sorted(today.pause_counts_by_reason.items()):
                pauses.add_row(
                    reason.replace("_", " "),
                    str(count),
                    str(today.pause_minutes_by_reason.get(reason, 0)),
                )
            self.console.print(pauses)

    def show_insights(self, insights: List):
        if not insights:
            self.console.print("[yellow]No insights yet - keep taking breaks![/yellow]")
            return
        for insight in insights:
            style = "green" if insight.is_positive else "yellow"
            self.console.print(Panel(
                Text(insight.description),
                title=f"[bold {style}]{insight.title}[/bold {style}]",
                expand=False,
            ))
