"""``greenshift policies`` — list the traffic-shift policies a pipeline may select."""

from __future__ import annotations

from datetime import timedelta

from rich.console import Console
from rich.table import Table

from greenshift.core.traffic import planned_weights, total_shift_duration
from greenshift.models.traffic import DEFAULT_DEPLOYMENT_CONFIG, PREDEFINED_POLICIES

console = Console()


def _fmt(delta: timedelta) -> str:
    minutes, seconds = divmod(int(delta.total_seconds()), 60)
    if not minutes and not seconds:
        return "-"
    return f"{minutes}m{seconds:02d}s" if seconds else f"{minutes}m"


def policies_cmd() -> None:
    """Show every deployment config with its planned green weights."""
    table = Table(title="Traffic-Shift Policies")
    table.add_column("Deployment config", style="cyan")
    table.add_column("Kind")
    table.add_column("Step", justify="right")
    table.add_column("Interval", justify="right")
    table.add_column("Bake", justify="right")
    table.add_column("Green weights")
    table.add_column("Total", justify="right")

    for name, policy in PREDEFINED_POLICIES.items():
        label = name.value
        if name == DEFAULT_DEPLOYMENT_CONFIG:
            label += " [green](default)[/green]"
        table.add_row(
            label,
            policy.kind.value,
            f"{policy.step_percentage}%",
            _fmt(policy.step_interval),
            _fmt(policy.canary_bake_time),
            " -> ".join(str(w) for w in planned_weights(policy)),
            _fmt(total_shift_duration(policy)),
        )

    console.print(table)
