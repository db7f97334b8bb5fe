"""Greenshift CLI — Typer-based command-line interface.

Provides the ``greenshift`` command with subcommands for running a
simulated blue/green release, monitoring an execution, listing the
traffic-shift policies and verifying the run ledger.

All output uses Rich for formatted terminal display.
"""
