"""Main Typer application — imports and registers all CLI commands.

Entry point: ``greenshift`` (configured via pyproject.toml project.scripts).

Commands: demo, monitor, policies, verify.
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from greenshift.cli.commands.demo import demo_cmd
from greenshift.cli.commands.monitor_cmd import monitor_cmd
from greenshift.cli.commands.policies import policies_cmd
from greenshift.cli.commands.verify import verify_cmd
from greenshift.config import Settings

app = typer.Typer(
    name="greenshift",
    help="Greenshift: blue/green continuous deployment with an auditable run ledger.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="demo", help="Run a simulated source -> build -> blue/green release.")(demo_cmd)
app.command(name="monitor", help="Show the Release Monitor for an execution.")(monitor_cmd)
app.command(name="policies", help="List the traffic-shift policies.")(policies_cmd)
app.command(name="verify", help="Verify the hash chain of an execution.")(verify_cmd)


def configure_logging(level: str) -> None:
    """Route log records through Rich at *level*."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Log level (defaults to GREENSHIFT_LOG_LEVEL or INFO).",
    ),
) -> None:
    """Greenshift command-line interface."""
    configure_logging(log_level or Settings().log_level)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
