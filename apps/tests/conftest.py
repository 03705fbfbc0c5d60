# conftest.py
# Ensure the repository root is on sys.path so pytest can import both
# top-level packages (millionbase, apps.services.registry) consistently,
# and provide the shared registry fixtures.

import sys
from pathlib import Path

import pytest

# conftest is at: apps/tests/conftest.py
# Walk up two levels to reach the repository root.
ROOT = Path(__file__).resolve().parents[2]
ROOT_STR = str(ROOT)

if ROOT_STR not in sys.path:
    # Insert at front so repo root takes precedence during imports
    sys.path.insert(0, ROOT_STR)

from millionbase.registry.access import OperatorAllowList  # noqa: E402
from millionbase.registry.store import RegistryStore  # noqa: E402


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "registry.db"


@pytest.fixture
def store(db_path: Path):
    """Registry with ten cells."""
    registry = RegistryStore(db_path, capacity=10)
    yield registry
    registry.close()


@pytest.fixture
def small_store(db_path: Path):
    """Registry with three cells and one operator, "ops"."""
    registry = RegistryStore(db_path, capacity=3, operators=OperatorAllowList(["ops"]))
    yield registry
    registry.close()
