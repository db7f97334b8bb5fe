"""Greenshift: blue/green continuous deployment with an auditable run ledger.

  - Three-stage release pipeline: source checkout, container image build,
    blue/green deploy
  - Artifact wiring validated before any execution starts
  - Linear, canary and all-at-once traffic shifting with health-gated steps
  - Automatic rollback to the serving task set on any unhealthy signal
  - Append-only, hash-chained SQLite run ledger; crash-resumable executions
"""

__version__ = "0.1.0"
__description__ = "Blue/green continuous deployment pipeline with an auditable run ledger"

from greenshift.core.orchestrator import Orchestrator
from greenshift.monitor.projection import MonitorProjection as ReleaseMonitor
from greenshift.pipeline import build_release_pipeline

__all__ = ["Orchestrator", "ReleaseMonitor", "build_release_pipeline", "__version__"]
