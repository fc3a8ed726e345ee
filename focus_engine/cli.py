"""focus-engine command line: run the API server or a terminal focus timer."""

from __future__ import annotations

import time
from datetime import datetime

import click
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .client import FocusApiClient
from .config import load_config
from .controller import FocusController
from .errors import FocusEngineError, TransportError, ValidationFailed
from .lifecycle import LifecycleEvent, Notification, SessionLifecycleManager
from .log import configure_logging
from .runner import run_timer
from .settings import SettingsProvider
from .timer import Phase, TimerState, format_time

console = Console()

PHASE_STYLES = {
    Phase.FOCUS: ("Focus", "bold red"),
    Phase.BREAK: ("Break", "bold green"),
    Phase.LONG_BREAK: ("Long break", "bold cyan"),
}


def _client(config) -> FocusApiClient:
    return FocusApiClient(config.api_url, config.user_id, timeout=config.http_timeout)


def _now_ms() -> int:
    return int(time.monotonic() * 1000)


def _print_notification(notification: Notification) -> None:
    data = notification.data
    event = notification.event
    if event == LifecycleEvent.FOCUS_SESSION_STARTED:
        console.print(f"[green]{data.get('message') or 'Focus session started'}[/green]")
    elif event == LifecycleEvent.FOCUS_SESSION_COMPLETED:
        console.print(f"[bold green]Session complete![/bold green] +{data['xpEarned']} XP")
        for achievement in data.get("newAchievements") or []:
            console.print(f"[yellow]Achievement unlocked:[/yellow] {achievement}")
    elif event == LifecycleEvent.SESSION_CONFLICT:
        console.print("[yellow]A focus session is already active elsewhere.[/yellow]")
    elif event == LifecycleEvent.SESSION_DEGRADED:
        console.print(f"[yellow]Warning:[/yellow] session store unreachable ({data.get('error')})")
        console.print("[dim]The timer still runs, but this session will not earn XP.[/dim]")
    elif event == LifecycleEvent.SESSION_UNRECORDED:
        console.print("[red]This focus phase was not recorded.[/red]")
    elif event == LifecycleEvent.PHASE_COMPLETE:
        if data.get("sound"):
            console.bell()
        console.print(f"[cyan]{data['phase']} finished[/cyan], next: {data['nextPhase']}")


def _render(state: TimerState, degraded: bool) -> Panel:
    label, style = PHASE_STYLES[state.phase]
    body = Text(format_time(state.time_left_seconds), style="bold", justify="center")
    body.append(f"\n{state.status.value}  #{state.session_count}  interruptions: {state.interruptions}",
                style="dim")
    title = f"[{style}]{label}[/{style}]"
    if degraded:
        title += " [yellow](offline)[/yellow]"
    return Panel(body, title=title, border_style="blue", expand=False)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, verbose):
    """Focus Engine: pomodoro sessions with server-side rewards."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config()
    if verbose:
        configure_logging("DEBUG")


@cli.command()
@click.option("--host", default=None, help="Bind address (default FOCUS_API_HOST)")
@click.option("--port", type=int, default=None, help="Port (default FOCUS_API_PORT)")
@click.pass_context
def serve(ctx, host, port):
    """Run the Focus API server."""
    import uvicorn

    from .server import create_app

    config = ctx.obj["config"]
    configure_logging("INFO")
    uvicorn.run(create_app(config), host=host or config.host, port=port or config.port)


@cli.command()
@click.option("--type", "session_type", type=click.Choice(["pomodoro", "custom"]), default="pomodoro")
@click.option("--task", "task_id", default=None, help="Task id to attach the session to")
@click.pass_context
def run(ctx, session_type, task_id):
    """Run one phase of the timer in the terminal (Ctrl-C to stop)."""
    config = ctx.obj["config"]
    client = _client(config)
    lifecycle = SessionLifecycleManager(client, notify=_print_notification)
    controller = FocusController(
        lifecycle,
        settings=SettingsProvider(client),
        notify=_print_notification,
        session_type=session_type,
        task_id=task_id,
    )

    active = controller.poll()
    if active is not None and click.confirm("A focus session is already active. Resume it?", default=True):
        started = datetime.fromisoformat(active["startTime"])
        elapsed = int((datetime.now() - started).total_seconds())
        controller.resume_existing(_now_ms(), elapsed_seconds=elapsed)
    else:
        try:
            controller.start(_now_ms())
        except ValidationFailed as e:
            raise click.ClickException(str(e))
        if controller.state.is_idle:
            raise click.ClickException("Timer not started: resolve the active session first")

    with Live(_render(controller.state, lifecycle.degraded), console=console, refresh_per_second=4) as live:
        run_timer(
            controller,
            poll_interval=config.poll_interval,
            on_tick=lambda result: live.update(_render(result.state, lifecycle.degraded)),
            until=lambda result: result.completed is not None,
        )


@cli.command()
@click.pass_context
def active(ctx):
    """Show the active focus session, if any."""
    try:
        session = _client(ctx.obj["config"]).get_active_session()
    except FocusEngineError as e:
        raise click.ClickException(str(e))
    if session is None:
        console.print("[dim]No active session[/dim]")
        return
    console.print(
        f"[bold]{session['id']}[/bold] {session['type']} {session['duration']}m "
        f"started {session['startTime']} interruptions={session['interruptions']}"
    )


@cli.command()
@click.option("--focus", "default_pomodoro_length", type=int, help="Focus length (minutes)")
@click.option("--break", "default_break_length", type=int, help="Short break length (minutes)")
@click.option("--long-break", "default_long_break_length", type=int, help="Long break length (minutes)")
@click.option("--cadence", "pomodoros_until_long_break", type=int, help="Focus phases per long break")
@click.option("--auto-breaks/--no-auto-breaks", "auto_start_breaks", default=None)
@click.option("--auto-pomodoros/--no-auto-pomodoros", "auto_start_pomodoros", default=None)
@click.option("--sound/--no-sound", "sound_enabled", default=None)
@click.pass_context
def settings(ctx, **changes):
    """Show focus settings, or update the ones given."""
    provider = SettingsProvider(_client(ctx.obj["config"]))
    changes = {k: v for k, v in changes.items() if v is not None}
    try:
        current = provider.update(**changes) if changes else provider.refresh()
    except (ValidationFailed, TransportError) as e:
        raise click.ClickException(str(e))
    if provider.stale:
        console.print("[yellow]Server unreachable, showing defaults[/yellow]")

    table = Table(show_header=True, header_style="bold cyan", border_style="blue", expand=False)
    table.add_column("Setting")
    table.add_column("Value", justify="right")
    for key, value in current.to_api().items():
        table.add_row(key, str(value))
    console.print(table)


@cli.command()
@click.pass_context
def stats(ctx):
    """Show focus statistics."""
    try:
        data = _client(ctx.obj["config"]).get_stats()
    except FocusEngineError as e:
        raise click.ClickException(str(e))

    table = Table(show_header=False, border_style="blue", expand=False)
    table.add_column("", style="cyan")
    table.add_column("", justify="right")
    table.add_row("Total sessions", str(data["totalSessions"]))
    table.add_row("Completed", str(data["completedSessions"]))
    table.add_row("Focus minutes", str(data["totalFocusTime"]))
    table.add_row("Avg productivity", str(data["averageProductivity"]))
    table.add_row("Today", str(data["todaysSessions"]))
    table.add_row("This week", str(data["thisWeekSessions"]))
    table.add_row("Streak (days)", str(data["currentStreak"]))
    table.add_row("XP", str(data.get("xp", 0)))
    console.print(table)


if __name__ == "__main__":
    cli()
