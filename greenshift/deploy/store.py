"""Durable blue/green deployment state, backed by SQLite.

Holds the latest ``DeploymentRecord`` per deployment so a controller that
crashed mid-``shifting`` or mid-``finalizing`` resumes from the last
recorded state instead of provisioning again. The full transition history
lives in the run ledger; this table is the resumable snapshot.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from greenshift.models.deployment import TERMINAL_DEPLOYMENT_STATES, DeploymentRecord

_CREATE_DEPLOYMENTS = """
CREATE TABLE IF NOT EXISTS deployments (
    deployment_id   TEXT PRIMARY KEY,
    execution_id    TEXT NOT NULL,
    target_id       TEXT NOT NULL,
    state           TEXT NOT NULL,
    stuck           INTEGER NOT NULL DEFAULT 0,
    record_json     TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);
"""

_CREATE_IDX_EXECUTION = """
CREATE INDEX IF NOT EXISTS idx_deployments_execution ON deployments(execution_id);
"""


class DeploymentStore:
    """Latest-state store for deployment records.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. May be shared with the run ledger.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(_CREATE_DEPLOYMENTS)
            conn.execute(_CREATE_IDX_EXECUTION)
            conn.commit()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False, timeout=30)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def save(self, record: DeploymentRecord) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO deployments
                    (deployment_id, execution_id, target_id, state, stuck, record_json, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(deployment_id) DO UPDATE SET
                    state = excluded.state,
                    stuck = excluded.stuck,
                    record_json = excluded.record_json,
                    updated_at = excluded.updated_at
                """,
                (
                    record.deployment_id,
                    record.execution_id,
                    record.target_id,
                    record.state.value,
                    int(record.stuck),
                    record.model_dump_json(),
                    record.updated_at.isoformat(),
                ),
            )
            conn.commit()

    def load(self, deployment_id: str) -> DeploymentRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT record_json FROM deployments WHERE deployment_id = ?",
                (deployment_id,),
            ).fetchone()
        return DeploymentRecord.model_validate_json(row[0]) if row else None

    def find_by_execution(self, execution_id: str) -> DeploymentRecord | None:
        """Return the most recently updated deployment of an execution."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT record_json FROM deployments WHERE execution_id = ? "
                "ORDER BY updated_at DESC LIMIT 1",
                (execution_id,),
            ).fetchone()
        return DeploymentRecord.model_validate_json(row[0]) if row else None

    def list_active(self) -> list[DeploymentRecord]:
        """Deployments not yet in a terminal state (including stuck ones)."""
        terminal = tuple(s.value for s in TERMINAL_DEPLOYMENT_STATES)
        placeholders = ", ".join("?" for _ in terminal)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT record_json FROM deployments WHERE state NOT IN ({placeholders}) "
                "ORDER BY updated_at ASC",
                terminal,
            ).fetchall()
        return [DeploymentRecord.model_validate_json(row[0]) for row in rows]

    def list_stuck(self) -> list[DeploymentRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT record_json FROM deployments WHERE stuck = 1 ORDER BY updated_at ASC"
            ).fetchall()
        return [DeploymentRecord.model_validate_json(row[0]) for row in rows]
