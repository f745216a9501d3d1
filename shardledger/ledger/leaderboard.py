"""Season leaderboards and wallet ranks.

Ordering is by the selected column descending, ties broken by wallet address
ascending. get_wallet_rank() uses the same ordering, so a wallet's rank is
always its 1-based position in find_top_by_season(). Reads are not
synchronised with ledger writes and may trail in-flight deltas.
"""

from __future__ import annotations

import math
from pathlib import Path

from shardledger.ledger.balances import _row_to_balance, get_balance, normalize_address
from shardledger.store.models import (
    RANK_COLUMNS,
    Category,
    Leaderboard,
    LeaderboardEntry,
    LeaderboardPage,
    ShardBalance,
    WalletStanding,
)
from shardledger.store.schema import DEFAULT_DB_PATH, _connect


def _rank_column(category: Category | str | None) -> str:
    return RANK_COLUMNS[Category(category) if category is not None else None]


def find_top_by_season(
    season_id: int,
    limit: int = 100,
    offset: int = 0,
    category: Category | str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> LeaderboardPage:
    """One page of balances plus the season's total row count."""
    col = _rank_column(category)
    conn = _connect(db_path)
    try:
        rows = conn.execute(
            f"""SELECT * FROM shard_balances
                WHERE season_id = ?
                ORDER BY {col} DESC, wallet_address ASC
                LIMIT ? OFFSET ?""",
            (season_id, limit, offset),
        ).fetchall()
        total = conn.execute(
            "SELECT COUNT(*) FROM shard_balances WHERE season_id = ?", (season_id,)
        ).fetchone()[0]
        return LeaderboardPage(entries=[_row_to_balance(r) for r in rows], total=total)
    finally:
        conn.close()


def get_wallet_rank(
    wallet_address: str,
    season_id: int,
    category: Category | str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> int | None:
    """1-based rank, or None when the wallet has no balance this season."""
    col = _rank_column(category)
    wallet = normalize_address(wallet_address)
    conn = _connect(db_path)
    try:
        row = conn.execute(
            f"SELECT {col} FROM shard_balances WHERE wallet_address = ? AND season_id = ?",
            (wallet, season_id),
        ).fetchone()
        if row is None:
            return None
        value = row[0]
        ahead = conn.execute(
            f"""SELECT COUNT(*) FROM shard_balances
                WHERE season_id = ?
                  AND ({col} > ? OR ({col} = ? AND wallet_address < ?))""",
            (season_id, value, value, wallet),
        ).fetchone()[0]
        return ahead + 1
    finally:
        conn.close()


def get_total_participants(season_id: int, db_path: Path | str = DEFAULT_DB_PATH) -> int:
    """Wallets that have earned a positive total this season."""
    conn = _connect(db_path)
    try:
        return conn.execute(
            "SELECT COUNT(*) FROM shard_balances WHERE season_id = ? AND total_shards > 0",
            (season_id,),
        ).fetchone()[0]
    finally:
        conn.close()


def get_total_shards_issued(season_id: int, db_path: Path | str = DEFAULT_DB_PATH) -> float:
    conn = _connect(db_path)
    try:
        return conn.execute(
            "SELECT COALESCE(SUM(total_shards), 0.0) FROM shard_balances WHERE season_id = ?",
            (season_id,),
        ).fetchone()[0]
    finally:
        conn.close()


def get_leaderboard(
    season_id: int,
    category: Category | str | None = None,
    limit: int = 100,
    page: int = 1,
    wallet_address: str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> Leaderboard:
    """Paginated leaderboard, optionally with the caller's own standing."""
    if page < 1 or limit < 1:
        raise ValueError("page and limit must be positive")
    category = Category(category) if category is not None else None
    offset = (page - 1) * limit
    result = find_top_by_season(season_id, limit, offset, category, db_path=db_path)
    entries = [
        LeaderboardEntry(
            rank=offset + i + 1,
            wallet_address=b.wallet_address,
            shards=b.category_amount(category),
            balance=b,
        )
        for i, b in enumerate(result.entries)
    ]

    standing = None
    if wallet_address:
        rank = get_wallet_rank(wallet_address, season_id, category, db_path=db_path)
        if rank is not None:
            balance = get_balance(wallet_address, season_id, db_path=db_path)
            standing = WalletStanding(
                rank=rank,
                shards=balance.category_amount(category),
                percentile=round((result.total - rank + 1) / result.total * 100, 2),
            )

    return Leaderboard(
        season_id=season_id,
        category=category,
        entries=entries,
        total_participants=get_total_participants(season_id, db_path=db_path),
        page=page,
        limit=limit,
        total_pages=math.ceil(result.total / limit) if result.total else 0,
        wallet=standing,
    )


def search_wallets(
    season_id: int,
    term: str,
    limit: int = 20,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[ShardBalance]:
    """Balances whose address contains `term`, highest total first."""
    pattern = f"%{normalize_address(term)}%"
    conn = _connect(db_path)
    try:
        rows = conn.execute(
            """SELECT * FROM shard_balances
               WHERE season_id = ? AND wallet_address LIKE ?
               ORDER BY total_shards DESC, wallet_address ASC
               LIMIT ?""",
            (season_id, pattern, limit),
        ).fetchall()
        return [_row_to_balance(r) for r in rows]
    finally:
        conn.close()
