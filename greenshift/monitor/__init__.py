"""Greenshift Release Monitor — a read-only projection of the run ledger.

- ``projection``: replays ledger entries into an ``ExecutionSnapshot``
  (stage states plus the live blue/green traffic split).
- ``renderer``: turns snapshots into Rich panels for the terminal.
"""
