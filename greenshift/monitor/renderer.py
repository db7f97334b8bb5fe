"""Rich terminal renderer for the Greenshift Release Monitor.

Turns ``ExecutionSnapshot`` into Rich renderables for terminal display,
with color-coded stage states, a traffic bar for the blue/green split and
optional continuous ``Rich.Live`` mode.

Color scheme
------------
- green     : SUCCEEDED
- red       : FAILED
- yellow    : RUNNING
- dim       : PENDING
- magenta   : SKIPPED
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from greenshift.models.deployment import DeploymentState
from greenshift.models.stages import StageState

if TYPE_CHECKING:
    from greenshift.monitor.projection import (
        DeploymentStatus,
        ExecutionSnapshot,
        MonitorProjection,
    )


# ---------------------------------------------------------------------------
# State -> Rich style mapping
# ---------------------------------------------------------------------------

_STATE_STYLES: dict[StageState, str] = {
    StageState.SUCCEEDED: "bold green",
    StageState.FAILED: "bold red",
    StageState.RUNNING: "bold yellow",
    StageState.PENDING: "dim",
    StageState.SKIPPED: "bold magenta",
}

_STATE_ICONS: dict[StageState, str] = {
    StageState.SUCCEEDED: "[green]SUCCEEDED[/green]",
    StageState.FAILED: "[bold red]FAILED[/bold red]",
    StageState.RUNNING: "[yellow]RUNNING[/yellow]",
    StageState.PENDING: "[dim]PENDING[/dim]",
    StageState.SKIPPED: "[magenta]SKIPPED[/magenta]",
}

_DEPLOYMENT_STYLES: dict[DeploymentState, str] = {
    DeploymentState.PROVISIONING: "yellow",
    DeploymentState.SHIFTING: "yellow",
    DeploymentState.VALIDATING: "yellow",
    DeploymentState.FINALIZING: "cyan",
    DeploymentState.TERMINATED: "bold green",
    DeploymentState.ROLLING_BACK: "bold red",
    DeploymentState.ROLLED_BACK: "bold red",
}

_BAR_WIDTH = 40


def traffic_bar(blue_weight: int, green_weight: int, width: int = _BAR_WIDTH) -> str:
    """A two-color bar of the traffic split, in Rich markup."""
    green_cells = round(width * green_weight / 100)
    blue_cells = width - green_cells
    return (
        f"[blue]{'█' * blue_cells}[/blue][green]{'█' * green_cells}[/green] "
        f"blue {blue_weight}% / green {green_weight}%"
    )


class MonitorRenderer:
    """Renders ``ExecutionSnapshot`` as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Single snapshot render
    # ------------------------------------------------------------------

    def render_snapshot(self, snapshot: ExecutionSnapshot) -> Panel:
        """Render a snapshot as a Rich Panel (printable or usable in Rich.Live)."""
        parts: list = [self._build_stage_table(snapshot)]

        deployment = snapshot.deployment
        if deployment is not None:
            parts.extend([Text(""), self._render_deployment(deployment)])

        chain_status = (
            "[green]valid[/green]" if snapshot.chain_valid else "[bold red]BROKEN[/bold red]"
        )
        summary = "  |  ".join(
            [
                f"[bold]Execution:[/bold] {snapshot.execution_id}",
                f"[bold]Status:[/bold] {snapshot.status}",
                f"[bold]Progress:[/bold] {snapshot.completed_count}/{snapshot.total_stages}",
                f"[bold]Artifacts:[/bold] {snapshot.artifact_count}",
                f"[bold]Chain:[/bold] {chain_status}",
            ]
        )
        parts.extend([Text(""), Text.from_markup(summary)])

        return Panel(
            Group(*parts),
            title=f"[bold]{snapshot.pipeline_name or 'Greenshift'} Release Monitor[/bold]",
            subtitle=f"Last updated: {snapshot.last_updated.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style="blue",
            padding=(1, 2),
        )

    def _build_stage_table(self, snapshot: ExecutionSnapshot) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)

        table.add_column("#", style="dim", width=3, justify="right")
        table.add_column("Stage", min_width=22)
        table.add_column("State", min_width=12, justify="center")
        table.add_column("Details", min_width=20)
        table.add_column("Artifacts", justify="right", width=10)

        for i, stage in enumerate(snapshot.stages):
            name_style = _STATE_STYLES.get(stage.state, "")
            details_parts: list[str] = []
            if stage.cause:
                details_parts.append(f"[red]{stage.cause.splitlines()[0]}[/red]")
            if stage.entered_at:
                details_parts.append(f"[dim]{stage.entered_at.strftime('%H:%M:%S')}[/dim]")
            table.add_row(
                str(i),
                f"[{name_style}]{stage.display_name}[/{name_style}]",
                _STATE_ICONS.get(stage.state, stage.state.value),
                " | ".join(details_parts) if details_parts else "[dim]-[/dim]",
                str(len(stage.artifact_refs)) if stage.artifact_refs else "[dim]0[/dim]",
            )
        return table

    def _render_deployment(self, deployment: DeploymentStatus) -> Text:
        style = _DEPLOYMENT_STYLES.get(deployment.state, "")
        lines = [
            f"[bold]Deployment:[/bold] {deployment.deployment_id} on {deployment.target_id}  "
            f"[{style}]{deployment.state.value.upper()}[/{style}]",
            traffic_bar(deployment.blue_weight, deployment.green_weight),
            "[bold]Green weights:[/bold] "
            + " -> ".join(str(w) for w in deployment.weight_history),
        ]
        if deployment.reason:
            lines.append(f"[red]{deployment.reason}[/red]")
        if deployment.stuck:
            lines.append("[bold red]STUCK: old task set was not terminated[/bold red]")
        return Text.from_markup("\n".join(lines))

    # ------------------------------------------------------------------
    # Continuous live rendering
    # ------------------------------------------------------------------

    def render_live(
        self,
        execution_id: str,
        projection: MonitorProjection,
        *,
        refresh_hz: float = 2.0,
    ) -> None:
        """Continuously render the monitor in Rich Live mode until Ctrl+C."""
        interval = 1.0 / max(refresh_hz, 0.1)

        with Live(
            console=self.console,
            refresh_per_second=refresh_hz,
            transient=False,
        ) as live:
            try:
                while True:
                    live.update(self.render_snapshot(projection.snapshot(execution_id)))
                    time.sleep(interval)
            except KeyboardInterrupt:
                live.update(self.render_snapshot(projection.snapshot(execution_id)))

    # ------------------------------------------------------------------
    # Standalone print
    # ------------------------------------------------------------------

    def print_snapshot(self, snapshot: ExecutionSnapshot) -> None:
        """Print a single snapshot to the console."""
        self.console.print(self.render_snapshot(snapshot))

    def print_chain_verification(self, execution_id: str, valid: bool) -> None:
        """Print a chain verification result."""
        if valid:
            self.console.print(
                f"[green]Hash chain for execution {execution_id} is valid.[/green]"
            )
        else:
            self.console.print(
                f"[bold red]Hash chain for execution {execution_id} is BROKEN![/bold red]"
            )
