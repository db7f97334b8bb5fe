"""Run ledger entry model (append-only, hash-chained).

The ledger is the durable record of every stage and deployment
transition. It is:
- Append-only (no UPDATE, no DELETE)
- Hash-chained (each entry links to the previous via SHA-256)
- Scoped to an execution (entries carry execution_id + subject)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """A single entry in the append-only run ledger.

    ``subject`` is a stage name, ``execution`` for pipeline-level events,
    or ``deployment:<id>`` for blue/green controller transitions.
    """

    model_config = ConfigDict(frozen=True)

    entry_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    execution_id: str
    subject: str
    state_transition: str  # "from_state->to_state", e.g. "pending->running"
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    input_hash: str = ""
    output_hash: str = ""
    artifact_references: list[str] = []  # artifact ids
    detail: dict[str, Any] = {}
    previous_entry_hash: str = ""
    entry_hash: str = ""

    @property
    def to_state(self) -> str:
        return self.state_transition.split("->", 1)[-1]
