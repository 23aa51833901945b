import click
import sys
import logging
from pathlib import Path
from rich.console import Console
from rich.table import Table
from pydantic import ValidationError
import uvicorn

from smart_break.config.config import EnforcementLevel, LedgerConfig, PauseDecisionConfig, TimerPreferences
from smart_break.config.logging_config import setup_logging
from smart_break.config.settings import settings
from smart_break.models.pause import PauseSignal
from smart_break.models.stats import StatsPeriod
from smart_break.services.display import TerminalDisplay
from smart_break.services.insights import generate_insights
from smart_break.services.ledger import AdherenceLedger
from smart_break.services.metrics import MetricsCollector
from smart_break.services.pause_engine import load_pause_config, save_pause_config
from smart_break.services.store import KeyValueStore
from smart_break.services.timer import load_timer_preferences, save_timer_preferences

logger = logging.getLogger(__name__)

console = Console()


def _store(ctx) -> KeyValueStore:
    return KeyValueStore(ctx.obj["db_path"])


def _ledger(ctx) -> AdherenceLedger:
    store = _store(ctx)
    goal = load_timer_preferences(store).daily_break_goal
    return AdherenceLedger(store, LedgerConfig(daily_break_goal=goal), persist_async=False)


def _note_restart():
    console.print("[dim]A running service picks this up when restarted[/dim]")


@click.group()
@click.option('--db', 'db_path', type=click.Path(dir_okay=False), default=None,
              help='Path to the statistics database')
@click.option('--debug', is_flag=True, help='Enable debug output')
@click.pass_context
def cli(ctx, db_path, debug):
    """Smart Break Service Controller"""
    setup_logging(debug)
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db_path or str(settings.DEFAULT_DB_PATH)
    ctx.obj["display"] = TerminalDisplay(console)


@cli.command()
def start():
    """Start the break timer with smart pause monitoring"""
    try:
        from smart_break.services.runner import run_service
        console.print("[yellow]Starting Smart Break...[/yellow]")
        run_service(TerminalDisplay(console))
    except Exception as e:
        logger.error(f"Failed to start service: {e}")
        console.print(f"[red]Failed to start service: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx):
    """Today's score, streak and goal progress"""
    try:
        ledger = _ledger(ctx)
        progress = ledger.goal_progress()
        config = load_pause_config(ledger.store)

        table = Table(title="Today")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right", style="green")
        table.add_row("Daily score", f"{ledger.daily_score():.0f}")
        table.add_row("Streak", f"{ledger.current_streak()} days")
        table.add_row("Breaks", f"{progress['completed']}/{progress['goal']}")
        table.add_row("Pause threshold", str(config.pause_threshold))
        console.print(table)
        if not config.is_threshold_reachable():
            console.print("[yellow]Warning: pause threshold cannot be reached with the enabled signals[/yellow]")
    except Exception as e:
        logger.error(f"Failed to check status: {e}")
        console.print(f"[red]Error checking status: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option('--period', type=click.Choice([p.value for p in StatsPeriod]), default='today',
              help='Period to summarize')
@click.pass_context
def stats(ctx, period):
    """Show break statistics"""
    try:
        ledger = _ledger(ctx)
        aggregated = ledger.aggregated_stats(StatsPeriod(period))
        ctx.obj["display"].show_stats(aggregated, ledger.today_stats())
    except Exception as e:
        logger.error(f"Failed to show stats: {e}")
        console.print(f"[red]Error showing stats: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.pass_context
def insights(ctx):
    """Show wellness insights"""
    try:
        ledger = _ledger(ctx)
        ctx.obj["display"].show_insights(generate_insights(ledger))
    except Exception as e:
        logger.error(f"Failed to generate insights: {e}")
        console.print(f"[red]Error generating insights: {e}[/red]")
        sys.exit(1)


@cli.command()
@click.option('--format', 'fmt', type=click.Choice(['json', 'csv']), default='json')
@click.option('--output', type=click.Path(dir_okay=False), default=None,
              help='Write to a file instead of stdout')
@click.pass_context
def export(ctx, fmt, output):
    """Export statistics as JSON or CSV"""
    try:
        metrics = MetricsCollector(_ledger(ctx))
        content = metrics.export_json() if fmt == 'json' else metrics.export_csv()
        if output:
            Path(output).write_text(content)
            console.print(f"[green]Exported {fmt.upper()} to {output}[/green]")
        else:
            click.echo(content, nl=False)
    except Exception as e:
        logger.error(f"Failed to export: {e}")
        console.print(f"[red]Error exporting: {e}[/red]")
        sys.exit(1)


@cli.command('reset-stats')
@click.confirmation_option(prompt='Erase all sessions and statistics?')
@click.pass_context
def reset_stats(ctx):
    """Erase all sessions and statistics"""
    _ledger(ctx).reset_all_stats()
    console.print("[green]All statistics reset[/green]")


@cli.group()
def config():
    """Inspect and change smart pause settings.

    Settings are read when the service starts; restart a running service, or
    use POST /api/config on the web API, for changes to take effect.
    """
    pass


@config.command('show')
@click.pass_context
def config_show(ctx):
    """Show detection config and timer preferences"""
    store = _store(ctx)
    pause_config = load_pause_config(store)
    preferences = load_timer_preferences(store)

    table = Table(title="Smart Pause")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in pause_config.model_dump(mode="json").items():
        if isinstance(value, list):
            value = ", ".join(sorted(value)) or "-"
        table.add_row(key, str(value))
    table.add_row("max_reachable_weight", str(pause_config.max_reachable_weight()))
    console.print(table)

    prefs = Table(title="Timer")
    prefs.add_column("Setting", style="cyan")
    prefs.add_column("Value", style="green")
    for key, value in preferences.model_dump(mode="json").items():
        prefs.add_row(key, str(value))
    console.print(prefs)


@config.command('set-threshold')
@click.argument('threshold', type=click.IntRange(1, 1000))
@click.pass_context
def config_set_threshold(ctx, threshold):
    """Set the summed weight that holds breaks"""
    store = _store(ctx)
    updated = load_pause_config(store).model_copy(update={"pause_threshold": threshold})
    save_pause_config(store, updated)
    _note_restart()
    console.print(f"[green]Pause threshold set to {threshold}[/green]")
    if not updated.is_threshold_reachable():
        console.print(
            f"[yellow]Warning: enabled signals only reach {updated.max_reachable_weight()}; "
            "smart pause will never trigger[/yellow]"
        )


@config.command('preset')
@click.argument('name', type=click.Choice(['default', 'conservative']))
@click.pass_context
def config_preset(ctx, name):
    """Replace detection config with a preset"""
    store = _store(ctx)
    preset = PauseDecisionConfig.conservative() if name == 'conservative' else PauseDecisionConfig()
    current = load_pause_config(store)
    preset = preset.model_copy(update={"whitelisted_apps": current.whitelisted_apps})
    save_pause_config(store, preset)
    _note_restart()
    console.print(f"[green]Applied {name} preset (threshold {preset.pause_threshold})[/green]")


@config.command('whitelist')
@click.argument('action', type=click.Choice(['add', 'remove']))
@click.argument('app_id')
@click.pass_context
def config_whitelist(ctx, action, app_id):
    """Never let APP_ID contribute a pause signal"""
    store = _store(ctx)
    current = load_pause_config(store)
    apps = set(current.whitelisted_apps)
    if action == 'add':
        apps.add(app_id)
    else:
        apps.discard(app_id)
    save_pause_config(store, current.model_copy(update={"whitelisted_apps": apps}))
    _note_restart()
    console.print(f"[green]Whitelist: {', '.join(sorted(apps)) or '(empty)'}[/green]")


@config.command('signal')
@click.argument('action', type=click.Choice(['enable', 'disable']))
@click.argument('signal', type=click.Choice([s.value for s in PauseSignal]))
@click.pass_context
def config_signal(ctx, action, signal):
    """Enable or disable a single pause signal"""
    store = _store(ctx)
    current = load_pause_config(store)
    disabled = set(current.disabled_signals)
    if action == 'disable':
        disabled.add(PauseSignal(signal))
    else:
        disabled.discard(PauseSignal(signal))
    save_pause_config(store, current.model_copy(update={"disabled_signals": disabled}))
    _note_restart()
    console.print(f"[green]Signal {signal} {action}d[/green]")


@config.command('enforcement')
@click.argument('level', type=click.Choice([level.value for level in EnforcementLevel]))
@click.option('--adjust-warning', is_flag=True, help='Also use the level\'s pre-break warning length')
@click.pass_context
def config_enforcement(ctx, level, adjust_warning):
    """Set skip and postpone policy from an enforcement level"""
    store = _store(ctx)
    preferences = load_timer_preferences(store).with_enforcement(EnforcementLevel(level), adjust_warning)
    save_timer_preferences(store, preferences)
    _note_restart()
    console.print(
        f"[green]Enforcement {level}: skip {'allowed' if preferences.allow_skip_break else 'disabled'}, "
        f"{preferences.max_postpones} postpones[/green]"
    )


@config.command('quiet-hours')
@click.option('--start', type=click.IntRange(0, 23), default=None, help='First working hour')
@click.option('--end', type=click.IntRange(0, 23), default=None, help='Hour working time ends')
@click.option('--days', default=None, help='Active weekdays, e.g. 0,1,2,3,4 (Monday is 0)')
@click.option('--off', is_flag=True, help='Remind at any hour')
@click.pass_context
def config_quiet_hours(ctx, start, end, days, off):
    """Only remind during working hours and on active days"""
    store = _store(ctx)
    update = {"quiet_hours_enabled": not off}
    if start is not None:
        update["working_hours_start"] = start
    if end is not None:
        update["working_hours_end"] = end
    if days is not None:
        try:
            update["active_days"] = {int(d) for d in days.split(",") if d.strip()}
        except ValueError:
            raise click.BadParameter(f"Not a list of weekday numbers: {days}", param_hint="--days")
    try:
        preferences = TimerPreferences.model_validate(
            {**load_timer_preferences(store).model_dump(), **update}
        )
    except ValidationError as e:
        raise click.BadParameter(str(e))
    save_timer_preferences(store, preferences)
    _note_restart()
    if preferences.quiet_hours_enabled:
        console.print(
            f"[green]Reminders between {preferences.working_hours_start}:00 and "
            f"{preferences.working_hours_end}:00 on days "
            f"{', '.join(str(d) for d in sorted(preferences.active_days))}[/green]"
        )
    else:
        console.print("[green]Quiet hours off[/green]")


@cli.command()
@click.option('--host', default=None, help='Host to bind to')
@click.option('--port', default=None, type=int, help='Port to bind to')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
def web(host, port, reload):
    """Start the web dashboard API"""
    host = host or settings.WEB_HOST
    port = port or settings.WEB_PORT
    click.echo(f"Starting web interface on http://{host}:{port}")
    uvicorn.run(
        "smart_break.web.app:app",
        host=host,
        port=port,
        reload=reload
    )


if __name__ == '__main__':
    cli()
