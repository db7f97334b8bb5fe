"""``greenshift demo`` — run a simulated release end to end.

Executes source -> build -> blue/green deploy against an in-memory
execution target whose blue task set is already serving, on a simulated
clock so a ten-minute linear rollout finishes instantly. Health failures
and an unreachable target can be injected to watch a rollback or a stuck
termination.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel

from greenshift.collaborators import (
    ExecutionTarget,
    InMemoryTaskSetBackend,
    ScriptedHealthCheck,
    SimulatedClock,
    StaticBuildExecutor,
    StaticSourceProducer,
    WeightTriggeredHealthCheck,
)
from greenshift.config import Settings
from greenshift.models.traffic import DeploymentConfigName
from greenshift.monitor.projection import MonitorProjection
from greenshift.monitor.renderer import MonitorRenderer, traffic_bar
from greenshift.pipeline import build_release_pipeline, trigger_for

console = Console()


def demo_cmd(
    policy: DeploymentConfigName = typer.Option(
        None,
        "--policy",
        "-p",
        help="Traffic-shift policy (defaults to GREENSHIFT_DEPLOYMENT_CONFIG_NAME).",
    ),
    fail_at: int = typer.Option(
        None,
        "--fail-at",
        min=1,
        max=100,
        help="Report the green task set unhealthy once it carries this much traffic.",
    ),
    stuck: bool = typer.Option(
        False,
        "--stuck",
        help="Make the target refuse to terminate the old task set.",
    ),
    termination_minutes: int = typer.Option(
        None,
        "--termination-minutes",
        min=1,
        help="Minutes the old task set stays registered after cutover.",
    ),
    artifact_dir: str = typer.Option(
        ".greenshift/demo-artifacts",
        "--artifacts",
        help="Path to the artifact store directory.",
    ),
    ledger_db: str = typer.Option(
        ".greenshift/demo-ledger.db",
        "--ledger",
        help="Path to the ledger SQLite database (uses demo-specific default).",
    ),
    target_id: str = typer.Option(
        "demo-cluster",
        "--target",
        help="Execution target id.",
    ),
) -> None:
    """Run a simulated release and show the Release Monitor afterwards."""
    settings = Settings()
    overrides: dict[str, Any] = {
        "ledger_db_path": Path(ledger_db),
        "artifact_store_path": Path(artifact_dir),
    }
    if policy is not None:
        overrides["deployment_config_name"] = policy
    if termination_minutes is not None:
        overrides["task_set_termination_time_in_minutes"] = termination_minutes
    config = settings.to_pipeline_config(**overrides)

    clock = SimulatedClock(datetime.now(timezone.utc))
    target = ExecutionTarget(target_id=target_id, attributes={"simulated": True})

    def _on_event(action: str, details: dict[str, Any]) -> None:
        stamp = clock.now().strftime("%H:%M:%S")
        if action == "weights" and len(details) == 2:
            green_id = next(k for k in details if k.startswith("ts-green"))
            green = details[green_id]
            console.print(f"[dim]{stamp}[/dim] {traffic_bar(100 - green, green)}")
        else:
            console.print(f"[dim]{stamp}[/dim] [cyan]{action}[/cyan] {details}")

    backend = InMemoryTaskSetBackend(
        failing_destroys=config.termination_retry_attempts if stuck else 0,
        on_event=_on_event,
    )
    backend.register_existing(target, "ts-blue-initial", image_ref=f"{config.ecr_repo_name}:previous")
    health = (
        WeightTriggeredHealthCheck(backend, fail_at)
        if fail_at is not None
        else ScriptedHealthCheck()
    )

    orchestrator = build_release_pipeline(
        config,
        source=StaticSourceProducer(),
        builder=StaticBuildExecutor(config.ecr_repo_name),
        backend=backend,
        health=health,
        target=target,
        clock=clock,
    )

    console.print()
    console.print(
        Panel(
            f"[bold]Greenshift Demo Release[/bold]\n\n"
            f"Pipeline: {config.pipeline_name}\n"
            f"Policy:   {config.deployment_config_name.value}\n"
            f"Target:   {target.target_id} (blue ts-blue-initial serving 100%)",
            border_style="cyan",
            padding=(1, 2),
        )
    )
    console.print()

    result = orchestrator.execute(trigger_for(config))

    console.print()
    projection = MonitorProjection(orchestrator.ledger, orchestrator.definition)
    renderer = MonitorRenderer(console=console)
    renderer.print_snapshot(projection.snapshot(result.execution_id))

    style = "green" if result.succeeded else "bold red"
    console.print()
    console.print(
        Panel(
            "\n".join([
                f"[{style}]{result.describe()}[/{style}]",
                "",
                f"[bold]Execution ID:[/bold] {result.execution_id}",
                f"[bold]Stages:[/bold]       "
                + ", ".join(f"{n}={s}" for n, s in result.stage_states.items()),
                f"[bold]Simulated time:[/bold] {sum(clock.sleeps):.0f}s",
            ]),
            title="[bold]Demo Summary[/bold]",
            border_style="green" if result.succeeded else "red",
            padding=(1, 2),
        )
    )
    if not result.succeeded:
        raise typer.Exit(code=1)
