"""
Sandbox registries.

Usage:
    from polecat.registry import SQLiteRegistry

    registry = SQLiteRegistry(Path("~/.polecat/registry.db").expanduser())
    idle = registry.list_idle("gastown")
"""

from polecat.registry.base import ClaimResult, SandboxRegistry
from polecat.registry.memory import InMemoryRegistry
from polecat.registry.sqlite import SQLiteRegistry

__all__ = [
    "ClaimResult",
    "SandboxRegistry",
    "InMemoryRegistry",
    "SQLiteRegistry",
]
