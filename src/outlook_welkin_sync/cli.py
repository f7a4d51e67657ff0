"""
Command-line interface for Outlook ↔ Welkin calendar sync.
"""

import logging
import os
from configparser import ConfigParser
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from outlook_welkin_sync.db import query_recent_runs
from outlook_welkin_sync.guids import derive_guid
from outlook_welkin_sync.models import DEFAULT_CONFIG
from outlook_welkin_sync.models import DEFAULT_STATE_DB
from outlook_welkin_sync.models import CalendarSyncError
from outlook_welkin_sync.models import SyncConfig
from outlook_welkin_sync.models import SyncStats
from outlook_welkin_sync.sync import CalendarSynchronizer

CONFIG_SECTION = "outlook-welkin-sync"

# environment variable -> config key
ENV_OVERRIDES = {
    "GRAPH_TOKEN": "graph_token",
    "WELKIN_TOKEN": "welkin_token",
    "WELKIN_DUMMY_PATIENT_ID": "dummy_patient_id",
    "OUTLOOK_SHARED_CALENDAR_USER": "shared_calendar_user",
    "OUTLOOK_SHARED_CALENDAR_NAME": "shared_calendar_name",
}

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Bidirectional calendar sync between Outlook (Microsoft Graph) and Welkin.",
)

console = Console()


# ---------------------------------------------------------------------------
# Global state shared across subcommands
# ---------------------------------------------------------------------------


@dataclass
class _State:
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG)
    state_db: Path | None = None
    verbose: bool = False


state = _State()


@app.callback()
def _global(
    config: Annotated[
        Path,
        typer.Option("--config", "-c", help=f"Config file path (default: {DEFAULT_CONFIG})"),
    ] = DEFAULT_CONFIG,
    state_db: Annotated[
        Path | None,
        typer.Option("--state-db", help=f"Run history DB path (default: {DEFAULT_STATE_DB})"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose debug output"),
    ] = False,
) -> None:
    state.config_path = config
    state.state_db = state_db
    state.verbose = verbose
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False, console=console)],
    )
    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _load_config_file(config_path: Path) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.read(config_path)
    if CONFIG_SECTION not in parser:
        return {}
    return dict(parser[CONFIG_SECTION])


def _resolve_settings(config_path: Path) -> dict[str, str]:
    """Config file values with environment overrides applied."""
    settings = _load_config_file(config_path)
    for env_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            settings[key] = value
    return settings


def _state_db_path(settings: dict[str, str]) -> Path:
    if state.state_db is not None:
        return state.state_db
    if settings.get("state_db_path"):
        return Path(settings["state_db_path"]).expanduser()
    return DEFAULT_STATE_DB


def _build_config(strategy: str | None = None, cleanup_days: int | None = None) -> SyncConfig:
    settings = _resolve_settings(state.config_path)
    defaults = SyncConfig(graph_token="", welkin_token="", dummy_patient_id="", state_db_path=Path())

    try:
        lookback_hours = float(settings.get("lookback_hours", defaults.lookback_hours))
        days = (
            cleanup_days
            if cleanup_days is not None
            else int(settings.get("cleanup_days", defaults.cleanup_days))
        )
    except ValueError as e:
        console.print(f"[bold red]Error:[/] Invalid number in {state.config_path}: {e}")
        raise typer.Exit(1) from None

    return SyncConfig(
        graph_token=settings.get("graph_token", ""),
        welkin_token=settings.get("welkin_token", ""),
        dummy_patient_id=settings.get("dummy_patient_id", ""),
        state_db_path=_state_db_path(settings),
        graph_api_url=settings.get("graph_api_url", defaults.graph_api_url),
        welkin_api_url=settings.get("welkin_api_url", defaults.welkin_api_url),
        strategy=strategy or settings.get("strategy", defaults.strategy),
        shared_calendar_user=settings.get("shared_calendar_user") or None,
        shared_calendar_name=settings.get("shared_calendar_name") or None,
        default_timezone=settings.get("default_timezone", defaults.default_timezone),
        lookback_hours=lookback_hours,
        cleanup_days=days,
        verbose=state.verbose,
    )


def _run(cfg: SyncConfig, title: str, operation) -> SyncStats:
    """Preflight, info panel, then run ``operation`` on a synchronizer."""
    from outlook_welkin_sync.preflight import run_preflight_checks

    if not run_preflight_checks(cfg, console):
        raise typer.Exit(1)

    info = Text()
    info.append("  Strategy:  ", style="bold")
    if cfg.strategy == "shared":
        info.append(f"shared calendar {cfg.shared_calendar_name!r} in {cfg.shared_calendar_user}")
    else:
        info.append("mailbox matched by worker name")
    info.append("\n  Graph:     ", style="bold")
    info.append(cfg.graph_api_url)
    info.append("\n  Welkin:    ", style="bold")
    info.append(cfg.welkin_api_url)
    info.append("\n  Operation: ")
    info.append(title, style="bold green")
    console.print(Panel(info, title="[bold]Outlook ↔ Welkin Sync[/bold]"))

    try:
        return operation(CalendarSynchronizer(cfg))
    except CalendarSyncError as e:
        console.print(f"[bold red]Sync failed:[/] {e}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None
    except Exception as e:
        console.print_exception()
        console.print(f"[bold red]Unexpected error:[/] {e}")
        raise typer.Exit(1) from e


def _print_results(stats: SyncStats) -> None:
    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_row("Synced", str(stats.synced))
    results.add_row("Created", str(stats.created))
    results.add_row("Skipped", str(stats.skipped))
    results.add_row("Deleted", str(stats.deleted))
    error_val = Text(str(stats.errors))
    if stats.errors == 0:
        error_val.append(" ✓", style="green")
    else:
        error_val.stylize("bold red")
    results.add_row("Errors", error_val)

    console.print(Panel(results, title="[bold]Results[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Subcommands: sync / cleanup
# ---------------------------------------------------------------------------

_STRATEGY_OPT = Annotated[
    str | None,
    typer.Option(
        "--strategy",
        "-s",
        help="Counterpart resolution: 'name' (per-worker mailbox) or 'shared' (overrides config)",
    ),
]


@app.command()
def sync(strategy: _STRATEGY_OPT = None) -> None:
    """Run one sweep: sync recently changed events both ways, then clean up orphans."""
    cfg = _build_config(strategy)
    stats = _run(cfg, "SYNC", lambda synchronizer: synchronizer.run())
    _print_results(stats)
    if stats.errors:
        raise typer.Exit(1)


@app.command()
def cleanup(
    days: Annotated[
        int | None,
        typer.Option("--days", "-d", help="How many days ahead to look for orphaned placeholders"),
    ] = None,
    strategy: _STRATEGY_OPT = None,
) -> None:
    """Delete placeholders whose counterpart is gone or cancelled, without syncing."""
    cfg = _build_config(strategy, cleanup_days=days)
    stats = _run(
        cfg,
        f"CLEANUP (next {cfg.cleanup_days} days)",
        lambda synchronizer: synchronizer.run_cleanup(cfg.cleanup_days),
    )
    _print_results(stats)
    if stats.errors:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------


@app.command()
def status(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number of runs to show")] = 10,
) -> None:
    """Show sync configuration and recent runs."""
    settings = _resolve_settings(state.config_path)
    db_path = _state_db_path(settings)
    config_exists = state.config_path.exists()
    db_exists = db_path.exists()

    cfg_info = Text()
    cfg_info.append("  Config:   ", style="bold")
    cfg_info.append(str(state.config_path) + " ")
    cfg_info.append(
        "✓" if config_exists else "(not found)", style="green" if config_exists else "red"
    )
    cfg_info.append("\n  State DB: ", style="bold")
    cfg_info.append(str(db_path) + " ")
    cfg_info.append("✓" if db_exists else "(not found)", style="green" if db_exists else "yellow")
    cfg_info.append("\n  Strategy: ", style="bold")
    cfg_info.append(settings.get("strategy", "name"))
    for label, key in (("Graph", "graph_token"), ("Welkin", "welkin_token")):
        cfg_info.append(f"\n  {label + ':':<10}", style="bold")
        if settings.get(key):
            cfg_info.append("token set", style="green")
        else:
            cfg_info.append("token missing", style="red")

    console.print(Panel(cfg_info, title="[bold]Outlook ↔ Welkin Sync — Status[/bold]"))

    rows = query_recent_runs(db_path, limit)
    if not rows:
        if not db_exists:
            console.print(
                "[yellow]No run history yet — run[/] "
                "[cyan]outlook-welkin-sync sync[/] "
                "[yellow]to create it.[/]"
            )
        else:
            console.print("[yellow]Run history is empty — no sweeps recorded yet.[/]")
        return

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Kind")
    table.add_column("Strategy")
    table.add_column("Started")
    table.add_column("Finished")
    table.add_column("Synced", justify="right")
    table.add_column("Created", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Errors", justify="right")

    for row in rows:
        errors = Text(str(row["errors"]), style="bold red" if row["errors"] else "")
        table.add_row(
            row["kind"],
            row["strategy"],
            row["started_at"],
            row["finished_at"] or Text("(unfinished)", style="yellow"),
            str(row["synced"]),
            str(row["created"]),
            str(row["skipped"]),
            str(row["deleted"]),
            errors,
        )

    console.print(Panel(table, title="[bold]Recent runs[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Subcommand: derive-id
# ---------------------------------------------------------------------------


@app.command("derive-id")
def derive_id(
    text: Annotated[str, typer.Argument(help="Text to derive the identifier from")],
) -> None:
    """Print the stable identifier derived from TEXT."""
    typer.echo(derive_guid(text))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
