"""``greenshift monitor EXECUTION_ID`` — show the Release Monitor for an execution.

Displays the state of every stage, the traffic split of the deployment,
artifact counts and hash chain status.  Supports continuous live mode
and chain verification.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from greenshift.config import Settings
from greenshift.core.run_ledger import LedgerIntegrityError, RunLedger
from greenshift.monitor.projection import MonitorProjection
from greenshift.monitor.renderer import MonitorRenderer

console = Console()


def monitor_cmd(
    execution_id: str = typer.Argument(
        ...,
        help="The pipeline execution ID to monitor.",
    ),
    live: bool = typer.Option(
        False,
        "--live",
        "-L",
        help="Enable continuous live monitoring mode (Ctrl+C to exit).",
    ),
    verify_chain: bool = typer.Option(
        False,
        "--verify-chain",
        "-V",
        help="Verify the hash chain integrity before displaying.",
    ),
    refresh_hz: float = typer.Option(
        2.0,
        "--refresh",
        "-r",
        help="Refresh rate in Hz for live mode.",
    ),
    ledger_db: str = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database (defaults to GREENSHIFT_LEDGER_PATH).",
    ),
) -> None:
    """Show the Release Monitor for a pipeline execution.

    The monitor is a pure read-only projection over the Run Ledger.
    It never maintains its own state — every display re-reads the ledger.
    """
    db_path = Path(ledger_db) if ledger_db else Settings().ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        console.print("[dim]Run a release first with: greenshift demo[/dim]")
        raise typer.Exit(code=1)

    ledger = RunLedger(db_path)
    projection = MonitorProjection(ledger)
    renderer = MonitorRenderer(console=console)

    if not ledger.get_execution_entries(execution_id):
        console.print(f"[bold red]Execution not found:[/bold red] {execution_id}")

        all_executions = ledger.get_all_execution_ids()
        if all_executions:
            console.print("\n[bold]Available executions:[/bold]")
            for eid in all_executions[:10]:
                console.print(f"  [cyan]{eid}[/cyan]")
            if len(all_executions) > 10:
                console.print(f"  [dim]... and {len(all_executions) - 10} more[/dim]")
        raise typer.Exit(code=1)

    if verify_chain:
        console.print("[bold cyan]Verifying hash chain...[/bold cyan]")
        try:
            valid = ledger.verify_chain(execution_id)
        except LedgerIntegrityError as exc:
            console.print(f"[bold red]Chain verification failed:[/bold red] {exc}")
            valid = False
        renderer.print_chain_verification(execution_id, valid)
        console.print()

    if live:
        console.print(
            f"[dim]Live monitoring {execution_id} at {refresh_hz} Hz. Press Ctrl+C to exit.[/dim]"
        )
        console.print()
        renderer.render_live(execution_id, projection, refresh_hz=refresh_hz)
    else:
        renderer.print_snapshot(projection.snapshot(execution_id))
