"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _reset_env_between_tests() -> None:
    # Store and balance source selection are env-driven; keep each test on defaults.
    for key in ("DATABASE_URL", "APP_ENV", "DISTRIBUTION_BALANCE_SOURCE"):
        os.environ.pop(key, None)


@pytest.fixture
def sqlite_url(tmp_path: Path) -> str:
    return f"sqlite+pysqlite:///{tmp_path / 'distributions_test.db'}"
