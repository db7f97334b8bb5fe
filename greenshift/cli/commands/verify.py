"""``greenshift verify EXECUTION_ID`` — check the run ledger's hash chain."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from greenshift.config import Settings
from greenshift.core.run_ledger import LedgerIntegrityError, RunLedger
from greenshift.monitor.renderer import MonitorRenderer

console = Console()


def verify_cmd(
    execution_id: str = typer.Argument(..., help="The pipeline execution ID to verify."),
    ledger_db: str = typer.Option(
        None,
        "--ledger",
        "-l",
        help="Path to the ledger SQLite database (defaults to GREENSHIFT_LEDGER_PATH).",
    ),
) -> None:
    """Verify the hash chain of an execution; exits 1 when it is broken."""
    db_path = Path(ledger_db) if ledger_db else Settings().ledger_path
    if not db_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {db_path}")
        raise typer.Exit(code=1)

    ledger = RunLedger(db_path)
    entries = ledger.get_execution_entries(execution_id)
    if not entries:
        console.print(f"[bold red]Execution not found:[/bold red] {execution_id}")
        raise typer.Exit(code=1)

    renderer = MonitorRenderer(console=console)
    try:
        valid = ledger.verify_chain(execution_id)
    except LedgerIntegrityError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        valid = False

    renderer.print_chain_verification(execution_id, valid)
    console.print(f"[dim]{len(entries)} entries checked[/dim]")
    if not valid:
        raise typer.Exit(code=1)
