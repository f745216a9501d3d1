"""Shared test helpers. Import in test files: from tests.helpers import wallet."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx

from shardledger.seasons.lifecycle import create_season
from shardledger.seasons.store import activate_season, insert_season
from shardledger.store.models import Season

SEASON_START = datetime(2026, 1, 1, tzinfo=timezone.utc)
SEASON_END = datetime(2026, 4, 1, tzinfo=timezone.utc)


def wallet(n: int) -> str:
    """Deterministic, valid lowercase address."""
    return f"0x{n:040x}"


def make_season(**overrides) -> Season:
    """Build an upcoming (unsaved) season with sensible defaults."""
    defaults = {
        "name": "Season 1",
        "chain": "base",
        "start_date": SEASON_START,
        "end_date": SEASON_END,
        "now": SEASON_START - timedelta(days=7),
    }
    defaults.update(overrides)
    return create_season(**defaults)


def insert_upcoming_season(db_path: Path, **overrides) -> Season:
    return insert_season(make_season(**overrides), db_path=db_path)


def insert_active_season(db_path: Path, **overrides) -> Season:
    season = insert_upcoming_season(db_path, **overrides)
    return activate_season(season.id, now=season.start_date, db_path=db_path)


def http_response(status_code: int, json_data=None, url: str = "https://example.test/") -> httpx.Response:
    """httpx.Response bound to a request so raise_for_status() works."""
    return httpx.Response(status_code, json=json_data, request=httpx.Request("GET", url))
