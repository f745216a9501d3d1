"""Shared fixtures for shardledger tests.

Helper functions (wallet, insert_active_season, etc.) are in tests/helpers.py.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from shardledger.store.models import Season
from tests.helpers import insert_active_season


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    """Temporary database path; each test gets an isolated SQLite file."""
    return tmp_path / "test.db"


@pytest.fixture()
def season(db_path: Path) -> Season:
    """Active season on base, 2026-01-01 → 2026-04-01 UTC, default config."""
    return insert_active_season(db_path)
