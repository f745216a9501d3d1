"""Per-wallet, per-season shard balances.

add_shards() is the single write path for shard_balances. Each delta is one
INSERT ... ON CONFLICT DO UPDATE statement: the category column and
total_shards are both computed from the row as it is at write time, so two
concurrent deltas for the same (wallet, season) serialise inside SQLite and
neither is lost. total_shards is always re-derived from the four category
columns in the same statement, never incremented on its own.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from shardledger.errors import NotFound
from shardledger.store.models import Category, ShardBalance
from shardledger.store.schema import DEFAULT_DB_PATH, _connect

logger = logging.getLogger(__name__)

_CATEGORY_ORDER = (Category.STAKING, Category.SOCIAL, Category.DEVELOPER, Category.REFERRAL)


def normalize_address(address: str) -> str:
    return address.strip().lower()


def _upsert_sql(category: Category) -> str:
    """Build the upsert for one category.

    In DO UPDATE, bare column names are the pre-update values, so the total is
    spelled out with the incremented expression substituted for the target
    column, summed in the same order as ShardBalance.category_sum.
    """
    col = category.column
    total_terms = [
        f"({c.column} + :amount)" if c == category else c.column for c in _CATEGORY_ORDER
    ]
    return f"""
        INSERT INTO shard_balances
            (wallet_address, season_id, {col}, total_shards,
             last_calculated_at, created_at, updated_at)
        VALUES (:wallet, :season_id, :amount, :amount, :now, :now, :now)
        ON CONFLICT(wallet_address, season_id) DO UPDATE SET
            {col} = {col} + :amount,
            total_shards = {" + ".join(total_terms)},
            last_calculated_at = :now,
            updated_at = :now
    """


_UPSERT_SQL = {c: _upsert_sql(c) for c in Category}


def _row_to_balance(row: sqlite3.Row) -> ShardBalance:
    return ShardBalance(**dict(row))


def _fetch_balance(conn: sqlite3.Connection, wallet: str, season_id: int) -> ShardBalance | None:
    row = conn.execute(
        "SELECT * FROM shard_balances WHERE wallet_address = ? AND season_id = ?",
        (wallet, season_id),
    ).fetchone()
    return _row_to_balance(row) if row else None


def apply_delta(
    conn: sqlite3.Connection,
    wallet: str,
    season_id: int,
    category: Category,
    amount: float,
    event_key: str | None = None,
) -> bool:
    """Apply a delta inside the caller's transaction. Returns False for a replayed event_key.

    The caller owns commit/rollback, which lets referral bonuses and the
    referee's own credit land atomically.
    """
    now = datetime.now(timezone.utc).isoformat()
    if event_key is not None:
        cur = conn.execute(
            """INSERT OR IGNORE INTO shard_ledger_entries
               (event_key, wallet_address, season_id, category, amount, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (event_key, wallet, season_id, str(category), amount, now),
        )
        if cur.rowcount == 0:
            return False
    conn.execute(
        _UPSERT_SQL[Category(category)],
        {"wallet": wallet, "season_id": season_id, "amount": amount, "now": now},
    )
    return True


def add_shards(
    wallet_address: str,
    season_id: int,
    category: Category | str,
    amount: float,
    *,
    event_key: str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> ShardBalance:
    """Add a signed delta to one category and return the resulting balance.

    The balance row is created on first write. With an event_key the delta is
    applied at most once; a replay returns the current balance untouched.
    """
    category = Category(category)
    wallet = normalize_address(wallet_address)
    conn = _connect(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        applied = apply_delta(conn, wallet, season_id, category, amount, event_key)
        balance = _fetch_balance(conn, wallet, season_id)
        conn.commit()
    finally:
        conn.close()

    if applied:
        logger.debug("%s %+.4f %s shards (season %d)", wallet, amount, category, season_id)
    else:
        logger.info("Skipped replayed ledger event %s", event_key)
    if balance is None:
        raise NotFound("balance", (wallet, season_id))
    return balance


def recalculate_total(
    wallet_address: str,
    season_id: int,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> ShardBalance:
    """Repair: overwrite total_shards with the sum of the four categories."""
    wallet = normalize_address(wallet_address)
    now = datetime.now(timezone.utc).isoformat()
    conn = _connect(db_path)
    try:
        cur = conn.execute(
            """UPDATE shard_balances
               SET total_shards = staking_shards + social_shards + developer_shards + referral_shards,
                   last_calculated_at = ?, updated_at = ?
               WHERE wallet_address = ? AND season_id = ?""",
            (now, now, wallet, season_id),
        )
        if cur.rowcount == 0:
            raise NotFound("balance", (wallet, season_id))
        conn.commit()
        return _fetch_balance(conn, wallet, season_id)
    finally:
        conn.close()


def get_balance(
    wallet_address: str,
    season_id: int,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> ShardBalance | None:
    conn = _connect(db_path)
    try:
        return _fetch_balance(conn, normalize_address(wallet_address), season_id)
    finally:
        conn.close()


def get_wallet_balances(
    wallet_address: str,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[ShardBalance]:
    """All seasons' balances for one wallet, newest season first."""
    conn = _connect(db_path)
    try:
        rows = conn.execute(
            "SELECT * FROM shard_balances WHERE wallet_address = ? ORDER BY season_id DESC",
            (normalize_address(wallet_address),),
        ).fetchall()
        return [_row_to_balance(r) for r in rows]
    finally:
        conn.close()


def list_season_wallets(season_id: int, db_path: Path | str = DEFAULT_DB_PATH) -> list[str]:
    conn = _connect(db_path)
    try:
        rows = conn.execute(
            "SELECT wallet_address FROM shard_balances WHERE season_id = ? ORDER BY wallet_address",
            (season_id,),
        ).fetchall()
        return [r["wallet_address"] for r in rows]
    finally:
        conn.close()
