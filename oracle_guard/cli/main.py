"""
CLI interface for Oracle Guard.

Provides command-line access to configuration, the usage ledger, replay
logs and one-off oracle requests.
"""

import logging
import sqlite3
import sys
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from oracle_guard.config.loader import load_config
from oracle_guard.core import offline_fallback
from oracle_guard.core.orchestrator import OracleOrchestrator
from oracle_guard.core.replay import CallType, ReplayLogger, compare_logs, diff_logs
from oracle_guard.core.request_queue import Priority
from oracle_guard.core.results import OracleResult
from oracle_guard.storage.db import DEFAULT_DB_PATH
from oracle_guard.storage.repository import UsageRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_state = {"config_path": None}


def _configure_logging(verbose: bool) -> None:
    """Route library logs through rich; the library itself never configures logging."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load():
    try:
        return load_config(_state["config_path"])
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show informational logs"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to oracle_guard.yaml"),
):
    """Oracle Guard CLI."""
    _configure_logging(verbose)
    _state["config_path"] = config
    if ctx.invoked_subcommand is None:
        console.print("Oracle Guard - Use --help to see available commands")


@app.command()
def status():
    """Show the effective configuration."""
    config = _load()
    table = Table(title="Oracle Guard Configuration")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("api_key", config.masked_api_key)
    for key, value in config.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@app.command()
def init(
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Usage ledger path"),
):
    """Initialize the usage ledger database."""
    try:
        initialize_schema(db)
        console.print("[green]✓[/] Usage ledger initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except sqlite3.Error as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def usage(
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Usage ledger path"),
    days: int = typer.Option(30, "--days", "-d", help="Days of history to include"),
):
    """Show ledger usage per call type."""
    try:
        repository = UsageRepository(db, initialize=False)
        stats = repository.get_usage_stats(days=days)
        by_call_type = repository.usage_by_call_type(days=days)
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            console.print("\n[bold yellow]No usage data found[/]")
            console.print("Run `oracle-guard init` and set ledger_path in the configuration.\n")
            sys.exit(EXIT_CODE_PASS)
        raise

    if not stats["total_calls"]:
        console.print("\n[dim]No usage recorded in the last %d days.[/]" % days)
        sys.exit(EXIT_CODE_PASS)

    table = Table(title=f"Oracle usage, last {days} days")
    table.add_column("Call type")
    table.add_column("Calls", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Cost", justify="right")
    for call_type, row in by_call_type.items():
        table.add_row(call_type, str(row["calls"]), str(row["total_tokens"]), _format_currency(row["total_cost"]))
    table.add_row(
        "[bold]Total[/]",
        str(stats["total_calls"]),
        str(stats["total_tokens"]),
        _format_currency(stats["total_cost"]),
    )
    console.print(table)


@app.command("replay-stats")
def replay_stats(log: str = typer.Argument(..., help="Replay log file")):
    """Summarize a replay log."""
    replay_log = _read_replay(log)
    stats = replay_log.statistics()
    table = Table(title=f"Replay log {log}")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for key in ("call_count", "successful_calls", "failed_calls",
                "random_decision_count", "total_tokens", "first_tick", "last_tick"):
        table.add_row(key, str(stats[key]))
    for call_type, count in sorted(stats["calls_by_type"].items()):
        table.add_row(f"calls: {call_type}", str(count))
    console.print(table)


@app.command("compare-logs")
def compare_logs_command(
    first: str = typer.Argument(..., help="First replay log"),
    second: str = typer.Argument(..., help="Second replay log"),
):
    """Compare two replay logs. Exits 1 if they diverge."""
    try:
        differences = diff_logs(first, second)
        report = compare_logs(first, second)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(report)
    sys.exit(EXIT_CODE_FAIL if differences else EXIT_CODE_PASS)


@app.command()
def ask(
    prompt: str = typer.Argument(..., help="Prompt to send"),
    priority: str = typer.Option("high", "--priority", "-p", help="high, medium or low"),
    call_type: str = typer.Option(
        CallType.DECISION_INTERPRETATION.value, "--call-type", "-t", help="Call type tag"
    ),
    offline: bool = typer.Option(False, "--offline", help="Skip live providers"),
):
    """Send one prompt through the full orchestration path."""
    try:
        request_priority = Priority[priority.upper()]
        request_type = CallType(call_type.upper())
    except (KeyError, ValueError):
        console.print(f"[red]Error:[/] invalid priority {priority!r} or call type {call_type!r}")
        sys.exit(EXIT_CODE_FAIL)

    config = _load()
    orchestrator = OracleOrchestrator.from_config(config, providers=[] if offline else None)
    results: List[OracleResult] = []
    try:
        accepted = orchestrator.submit(
            prompt,
            priority=request_priority,
            callback=results.append,
            call_type=request_type,
            current_tick=0,
        )
        if not accepted:
            console.print("[red]Error:[/] request was rejected by the queue")
            sys.exit(EXIT_CODE_FAIL)

        limit = orchestrator.queue.timeout_ticks_for(request_priority) + 1
        for tick in range(limit + 1):
            if results:
                break
            orchestrator.tick(tick)
    finally:
        orchestrator.shutdown()

    if not results:
        console.print("[red]Error:[/] no answer was delivered")
        sys.exit(EXIT_CODE_FAIL)
    result = results[0]
    _display_result(result)
    console.print(orchestrator.cost_tracker.format_summary())
    sys.exit(EXIT_CODE_PASS if result.success else EXIT_CODE_FAIL)


@app.command()
def fallback(
    problem: str = typer.Argument(..., help="Problem category, e.g. RESOURCE_SCARCITY"),
    severity: float = typer.Argument(..., help="Severity between 0 and 1"),
):
    """Print the offline narrative for a problem."""
    console.print(offline_fallback.generate_npc_narrative(problem, severity))


def _read_replay(path: str) -> ReplayLogger:
    try:
        return ReplayLogger.from_file(path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)


def _format_currency(amount: float) -> str:
    """Format currency with six decimal places."""
    return f"${abs(amount):,.6f}"


def _display_result(result: OracleResult) -> None:
    """Display one oracle result."""
    if result.success:
        console.print(f"\n[bold]Answer[/bold] ({result.provider.value}, {result.provider_name or '-'})")
        console.print(result.text)
        console.print(
            f"[dim]tokens {result.input_tokens}+{result.completion_tokens}, "
            f"{result.latency_ms}ms, live={result.used_live_backend}[/]"
        )
    else:
        error_type = result.error_type.value if result.error_type else "unknown"
        console.print(f"\n[red]Failed ({error_type}):[/] {result.error_message}")


if __name__ == "__main__":
    app()
