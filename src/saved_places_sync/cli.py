"""
Command-line interface for Saved Places Sync.
"""

import asyncio
import logging
import time
from configparser import ConfigParser
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from saved_places_sync.models import CONFLICT_STRATEGIES
from saved_places_sync.models import DEFAULT_CONFIG
from saved_places_sync.models import DEFAULT_STATE_DB
from saved_places_sync.models import LOCAL_WINS
from saved_places_sync.models import OP_COMPLETED
from saved_places_sync.models import OP_FAILED
from saved_places_sync.models import OP_IN_PROGRESS
from saved_places_sync.models import OP_PENDING
from saved_places_sync.models import STATUS_FAILED
from saved_places_sync.models import STATUS_IN_PROGRESS
from saved_places_sync.models import STATUS_SUCCESS
from saved_places_sync.models import SYNC_DEEP
from saved_places_sync.models import SYNC_QUICK
from saved_places_sync.models import PlacesSyncError
from saved_places_sync.models import SyncConfig
from saved_places_sync.models import SyncReport
from saved_places_sync.models import ValidationAbort
from saved_places_sync.store import StateDatabase
from saved_places_sync.store import query_sync_history

CONFIG_SECTION = "places-sync"
LIST_NAMES_SECTION = "places-sync.list-names"

# ---------------------------------------------------------------------------
# Typer app
# ---------------------------------------------------------------------------

app = typer.Typer(
    no_args_is_help=True,
    rich_markup_mode="rich",
    help="Three-way sync between a local places database and saved-place list snapshots.",
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
        typer.Option("--state-db", help=f"State DB path (default: {DEFAULT_STATE_DB})"),
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


def _load_config_file(config_path: Path, section: str = CONFIG_SECTION) -> dict[str, str]:
    if not config_path.exists():
        return {}
    parser = ConfigParser()
    parser.optionxform = str  # list-name mappings are case-sensitive file stems
    parser.read(config_path)
    if section not in parser:
        return {}
    return dict(parser[section])


def _state_db_path(config_file: dict[str, str] | None = None) -> Path:
    """CLI option, then config file, then the default."""
    if state.state_db is not None:
        return state.state_db
    if config_file is None:
        config_file = _load_config_file(state.config_path)
    if config_file.get("state_db"):
        return Path(config_file["state_db"]).expanduser()
    return DEFAULT_STATE_DB


def _build_config(deep: bool, dry_run: bool, snapshot: Path | None) -> SyncConfig:
    config_file = _load_config_file(state.config_path)

    snapshot_path = snapshot
    if snapshot_path is None and config_file.get("snapshot"):
        snapshot_path = Path(config_file["snapshot"]).expanduser()

    strategy = config_file.get("conflict_strategy", LOCAL_WINS)
    if strategy not in CONFLICT_STRATEGIES:
        raise typer.BadParameter(
            f"conflict_strategy must be one of {', '.join(CONFLICT_STRATEGIES)}, got {strategy!r}"
        )

    try:
        defaults = SyncConfig(state_db_path=DEFAULT_STATE_DB)
        quick_limit = int(config_file.get("quick_limit", defaults.quick_limit))
        quick_delay = (
            float(config_file.get("quick_delay_min", defaults.quick_delay[0])),
            float(config_file.get("quick_delay_max", defaults.quick_delay[1])),
        )
        deep_delay = (
            float(config_file.get("deep_delay_min", defaults.deep_delay[0])),
            float(config_file.get("deep_delay_max", defaults.deep_delay[1])),
        )
        max_retries = int(config_file.get("max_retries", defaults.max_retries))
    except ValueError as e:
        raise typer.BadParameter(f"Invalid value in {state.config_path}: {e}") from e
    if quick_limit < 1:
        raise typer.BadParameter(f"quick_limit must be at least 1, got {quick_limit}")

    return SyncConfig(
        state_db_path=_state_db_path(config_file),
        snapshot_path=snapshot_path,
        mode=SYNC_DEEP if deep else SYNC_QUICK,
        dry_run=dry_run,
        verbose=state.verbose,
        quick_limit=quick_limit,
        quick_delay=quick_delay,
        deep_delay=deep_delay,
        conflict_strategy=strategy,
        max_retries=max_retries,
    )


def _status_text(status: str) -> Text:
    style = {
        STATUS_SUCCESS: "green",
        STATUS_FAILED: "bold red",
        STATUS_IN_PROGRESS: "cyan",
    }.get(status, "yellow")
    return Text(status, style=style)


def _format_ts(ts: int | None) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S") if ts else "—"


def _print_report(report: SyncReport) -> None:
    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_row("Lists pulled", str(report.lists_pulled))
    results.add_row("Places pulled", str(report.places_pulled))
    results.add_row("Notes changes", str(report.scalar_changes))
    results.add_row("Membership changes", str(report.membership_changes))
    results.add_row("Conflicts", str(report.conflicts_detected))
    if not report.dry_run:
        results.add_row("Applied", str(report.applied))
        results.add_row("Skipped", str(report.skipped))
    results.add_row("Ready to push", str(report.operations_ready))
    error_val = Text(str(len(report.errors)))
    if not report.errors:
        error_val.append(" ✓", style="green")
    else:
        error_val.stylize("bold red")
    results.add_row("Errors", error_val)
    results.add_row("Status", _status_text(report.status))

    title = "[bold]Dry run preview[/bold]" if report.dry_run else "[bold]Results[/bold]"
    console.print(Panel(results, title=title, expand=False))

    for example in report.examples:
        console.print(f"  [magenta][DRY RUN][/] {example}")
    for error in report.errors:
        where = f"{error['phase']}" + (f" / {error['list']}" if error.get("list") else "")
        console.print(f"  [red]✗[/] [bold]{where}[/]: {error['error']}")


# ---------------------------------------------------------------------------
# Subcommand: sync
# ---------------------------------------------------------------------------

_DEEP = Annotated[
    bool,
    typer.Option(
        "--deep",
        help="Pull every place of every list (detects remote removals); default is quick",
    ),
]
_DRY_RUN = Annotated[bool, typer.Option("--dry-run", "-n", help="Preview changes without applying")]
_SNAPSHOT = Annotated[
    Path | None,
    typer.Option("--snapshot", "-s", help="Remote snapshot JSON exported by the scraper"),
]


@app.command()
def sync(deep: _DEEP = False, dry_run: _DRY_RUN = False, snapshot: _SNAPSHOT = None) -> None:
    """Pull the remote snapshot, merge it into the local database and queue write-backs."""
    from saved_places_sync.preflight import run_preflight_checks
    from saved_places_sync.sync import PlacesSynchronizer

    cfg = _build_config(deep, dry_run, snapshot)
    if not run_preflight_checks(cfg, console):
        raise typer.Exit(1)

    info = Text()
    info.append("  Snapshot:  ", style="bold")
    info.append(f"{cfg.snapshot_path}\n")
    info.append("  State DB:  ", style="bold")
    info.append(f"{cfg.state_db_path}\n")
    info.append("  Mode:      ", style="bold")
    if cfg.mode == SYNC_DEEP:
        info.append("DEEP", style="bold yellow")
        info.append(" (all places)", style="dim")
    else:
        info.append("QUICK", style="bold green")
        info.append(f" (first {cfg.quick_limit} per list)", style="dim")
    info.append("\n  Conflicts: ", style="bold")
    info.append(cfg.conflict_strategy, style="cyan")
    if cfg.dry_run:
        info.append("\n  ")
        info.append("DRY RUN", style="bold magenta")
    console.print(Panel(info, title="[bold]Saved Places Sync[/bold]"))

    try:
        report = PlacesSynchronizer(cfg).run()
    except ValidationAbort as e:
        if e.report is not None:
            _print_report(e.report)
        console.print(f"[bold red]Sync aborted:[/] {e}")
        raise typer.Exit(1) from None
    except PlacesSyncError as e:
        console.print(f"[bold red]Sync failed:[/] {e}")
        raise typer.Exit(1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted by user[/]")
        raise typer.Exit(130) from None
    except Exception as e:
        console.print_exception()
        console.print(f"[bold red]Unexpected error:[/] {e}")
        raise typer.Exit(1) from e

    _print_report(report)


# ---------------------------------------------------------------------------
# Subcommand: status
# ---------------------------------------------------------------------------


@app.command()
def status(
    limit: Annotated[int, typer.Option("--limit", "-l", help="Number of runs to show")] = 10,
) -> None:
    """Show recent sync runs and the pending operation queue."""
    config_file = _load_config_file(state.config_path)
    db_path = _state_db_path(config_file)
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
    console.print(Panel(cfg_info, title="[bold]Saved Places Sync — Status[/bold]"))

    entries, counts = query_sync_history(db_path, limit=limit)
    if not entries and not counts:
        if not db_exists:
            console.print(
                "[yellow]No state database yet — run[/] "
                "[cyan]saved-places-sync seed[/] "
                "[yellow]or[/] [cyan]saved-places-sync sync[/] [yellow]to create it.[/]"
            )
        else:
            console.print("[yellow]State database is empty — no syncs recorded yet.[/]")
        return

    stale_after = SyncConfig(state_db_path=db_path).stale_after_seconds
    now = int(time.time())

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("#", justify="right")
    table.add_column("Type")
    table.add_column("Started")
    table.add_column("Status")
    table.add_column("Places", justify="right")
    table.add_column("Pushed", justify="right")
    table.add_column("Conflicts", justify="right")
    table.add_column("Errors", justify="right")
    for entry in entries:
        status_cell = _status_text(entry["status"])
        if entry["status"] == STATUS_IN_PROGRESS and entry["started_at"] < now - stale_after:
            status_cell.append(" (crashed?)", style="bold red")
        table.add_row(
            str(entry["id"]),
            entry["sync_type"],
            _format_ts(entry["started_at"]),
            status_cell,
            str(entry["places_pulled"]),
            str(entry["operations_pushed"]),
            str(entry["conflicts_detected"]),
            str(len(entry["errors"])),
        )
    console.print(Panel(table, title="[bold]Recent syncs[/bold]", expand=False))

    queue = Table.grid(padding=(0, 2))
    queue.add_column(style="bold")
    queue.add_column(justify="right")
    for op_status in (OP_PENDING, OP_IN_PROGRESS, OP_COMPLETED, OP_FAILED):
        value = Text(str(counts.get(op_status, 0)))
        if op_status == OP_FAILED and counts.get(op_status):
            value.stylize("bold red")
        queue.add_row(op_status, value)
    console.print(Panel(queue, title="[bold]Pending operations[/bold]", expand=False))


# ---------------------------------------------------------------------------
# Subcommand: queue
# ---------------------------------------------------------------------------


@app.command()
def queue(
    op_status: Annotated[
        str | None,
        typer.Option(
            "--status",
            help=f"Only show operations with this status ({OP_PENDING}, {OP_IN_PROGRESS}, "
            f"{OP_COMPLETED}, {OP_FAILED})",
        ),
    ] = None,
) -> None:
    """List queued write-back operations."""
    if op_status is not None and op_status not in (
        OP_PENDING,
        OP_IN_PROGRESS,
        OP_COMPLETED,
        OP_FAILED,
    ):
        raise typer.BadParameter(f"Unknown status: {op_status}")

    db_path = _state_db_path()
    if not db_path.exists():
        console.print(f"[yellow]No state database at {db_path}[/]")
        return

    with StateDatabase(db_path) as db:
        operations = db.pending_ops.find_all(status=op_status)

    if not operations:
        console.print("[green]No queued operations.[/]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("#", justify="right")
    table.add_column("Operation")
    table.add_column("Target", overflow="fold")
    table.add_column("Status")
    table.add_column("Retries", justify="right")
    table.add_column("Next retry")
    table.add_column("Error", overflow="fold")
    for op in operations:
        payload = op["payload"]
        target = payload.get("remote_id") or payload.get("name") or ""
        if payload.get("list_name"):
            target += f" → {payload['list_name']}"
        table.add_row(
            str(op["id"]),
            op["operation_type"],
            target,
            _status_text(op["status"]),
            f"{op['retry_count']}/{op['max_retries']}",
            _format_ts(op["next_retry_at"]),
            op["error_message"] or "",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Subcommand: push
# ---------------------------------------------------------------------------


@app.command()
def push() -> None:
    """Dispatch ready write-back operations to the remote service."""
    from saved_places_sync.dispatch import UnsupportedDispatcher
    from saved_places_sync.dispatch import process_ready_operations

    db_path = _state_db_path()
    if not db_path.exists():
        console.print(f"[yellow]No state database at {db_path}[/]")
        return

    with StateDatabase(db_path) as db:
        result = asyncio.run(process_ready_operations(db, UnsupportedDispatcher()))

    results = Table.grid(padding=(0, 2))
    results.add_column(style="bold")
    results.add_column(justify="right")
    results.add_row("Completed", str(result.completed))
    results.add_row("Retrying", str(result.retried))
    failed = Text(str(result.failed))
    if result.failed:
        failed.stylize("bold red")
    results.add_row("Failed", failed)
    console.print(Panel(results, title="[bold]Write-back[/bold]", expand=False))

    for error in result.errors:
        console.print(f"  [red]✗[/] [bold]#{error['operation_id']}[/]: {error['error']}")
    if result.failed:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Subcommand: seed
# ---------------------------------------------------------------------------


@app.command()
def seed(
    seed_dir: Annotated[
        Path,
        typer.Argument(help="Directory of saved-list CSV exports (one file per list)"),
    ],
) -> None:
    """Import saved-list CSV exports into the local places database."""
    from saved_places_sync.seed import seed_from_directory

    list_names = _load_config_file(state.config_path, LIST_NAMES_SECTION)
    db_path = _state_db_path()

    try:
        with StateDatabase(db_path) as db:
            results = seed_from_directory(db, seed_dir, list_names=list_names)
            total_places = len(db.places.find_all())
            total_lists = len(db.lists.find_all())
    except PlacesSyncError as e:
        console.print(f"[bold red]Seed failed:[/] {e}")
        raise typer.Exit(1) from None

    table = Table(show_header=True, header_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("List")
    table.add_column("New", justify="right")
    table.add_column("Existing", justify="right")
    table.add_column("Total", justify="right")
    for stats in results:
        table.add_row(stats.list_name, str(stats.imported), str(stats.existing), str(stats.rows))
    console.print(Panel(table, title="[bold]Seeded lists[/bold]", expand=False))
    console.print(f"Database now holds {total_places} place(s) in {total_lists} list(s).")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    app()
