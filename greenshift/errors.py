"""Base exception shared by every Greenshift subsystem.

Concrete errors live beside the code that raises them; they all derive
from ``GreenshiftError`` so callers can catch the whole family at a
boundary (the CLI does).
"""

from __future__ import annotations


class GreenshiftError(Exception):
    """Root of the Greenshift exception hierarchy."""
