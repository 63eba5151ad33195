"""Pytest configuration: import path and shared registry fixtures."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in sys.path so tests.* helpers import.
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from polecat.config import reset_settings  # noqa: E402
from polecat.metrics import reset_dispatch_metrics  # noqa: E402
from polecat.registry import InMemoryRegistry, SQLiteRegistry  # noqa: E402


@pytest.fixture(params=["memory", "sqlite"])
def registry(request, tmp_path):
    """Every registry backend, fresh per test."""
    if request.param == "memory":
        return InMemoryRegistry()
    return SQLiteRegistry(tmp_path / "registry.db")


@pytest.fixture(autouse=True)
def _clean_globals():
    reset_settings()
    reset_dispatch_metrics()
    yield
    reset_settings()
