"""Database path resolver."""

from __future__ import annotations

from pathlib import Path

from shardledger.config import settings
from shardledger.store.schema import DEFAULT_DB_PATH

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def resolve_db_path(explicit_db_path: str | None = None) -> str:
    """Pick the ledger DB: the --db flag, then DB_PATH, then data/shards.db.

    Relative paths are taken from the project root so cron jobs started from
    another directory still hit the same file.
    """
    candidate = explicit_db_path or settings.db_path
    if not candidate:
        return str(DEFAULT_DB_PATH)
    path = Path(candidate).expanduser()
    if not path.is_absolute():
        path = (PROJECT_ROOT / path).resolve()
    return str(path)
