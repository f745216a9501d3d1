"""Daily vault position snapshots and staking shard math.

One row per (wallet, vault, UTC day). Intra-day snapshots collapse onto that
row with an upsert; a snapshot from an older block than the stored one is
ignored so that out-of-order job delivery cannot roll a position back.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import date, datetime, timezone
from pathlib import Path

from shardledger.ledger.balances import normalize_address
from shardledger.seasons import lifecycle
from shardledger.store.models import SUPPORTED_CHAINS, Season, VaultBreakdownEntry, VaultPosition
from shardledger.store.schema import DEFAULT_DB_PATH, _connect

logger = logging.getLogger(__name__)

MIN_LOCK_WEEKS = 4
MAX_LOCK_WEEKS = 48
USD_PER_RATE_UNIT = 1000.0  # vault rates are quoted per $1000


def lock_multiplier(lock_weeks: int) -> float:
    """1.0x at 4 weeks rising linearly to 2.0x at 48 weeks."""
    if lock_weeks <= MIN_LOCK_WEEKS:
        return 1.0
    if lock_weeks >= MAX_LOCK_WEEKS:
        return 2.0
    return 1 + (lock_weeks - MIN_LOCK_WEEKS) / (MAX_LOCK_WEEKS - MIN_LOCK_WEEKS)


def calculate_shards(usd_value: float, rate_per_thousand_usd: float, lock_weeks: int) -> float:
    if usd_value <= 0:
        return 0.0
    return (usd_value / USD_PER_RATE_UNIT) * rate_per_thousand_usd * lock_multiplier(lock_weeks)


def position_shards(position: VaultPosition, rate_per_thousand_usd: float) -> float:
    """Daily shards for a stored position; zero when the vault is empty."""
    if not position.has_balance():
        return 0.0
    return calculate_shards(position.usd_value, rate_per_thousand_usd, position.lock_weeks)


def snapshot_day(value: datetime | date | str) -> str:
    """Normalise a timestamp to its UTC calendar day (YYYY-MM-DD)."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        return lifecycle.ensure_utc(value).date().isoformat()
    return value.isoformat()


def _parse_amount(raw: str | int, field: str) -> str:
    try:
        value = int(raw)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{field} must be an integer string, got {raw!r}") from e
    if value < 0:
        raise ValueError(f"{field} must be non-negative")
    return str(value)


def _row_to_position(row: sqlite3.Row) -> VaultPosition:
    return VaultPosition(**dict(row))


def record_snapshot(
    *,
    wallet_address: str,
    vault_address: str,
    asset_symbol: str,
    chain: str,
    balance: str | int,
    shares: str | int,
    usd_value: float,
    lock_weeks: int = MIN_LOCK_WEEKS,
    snapshot_at: datetime | date | str,
    block_number: int,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> VaultPosition:
    """Upsert the day's position for (wallet, vault) and return the stored row."""
    chain = chain.lower()
    if chain not in SUPPORTED_CHAINS:
        raise ValueError(f"unsupported chain: {chain}")
    if not MIN_LOCK_WEEKS <= lock_weeks <= MAX_LOCK_WEEKS:
        raise ValueError(f"lock_weeks must be within [{MIN_LOCK_WEEKS}, {MAX_LOCK_WEEKS}]")
    if usd_value < 0:
        raise ValueError("usd_value must be non-negative")

    wallet = normalize_address(wallet_address)
    vault = normalize_address(vault_address)
    day = snapshot_day(snapshot_at)
    now = datetime.now(timezone.utc).isoformat()

    conn = _connect(db_path)
    try:
        conn.execute(
            """INSERT INTO vault_positions
               (wallet_address, vault_address, asset_symbol, chain, balance, shares,
                usd_value, lock_weeks, snapshot_date, block_number, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(wallet_address, vault_address, snapshot_date) DO UPDATE SET
                   asset_symbol = excluded.asset_symbol,
                   chain = excluded.chain,
                   balance = excluded.balance,
                   shares = excluded.shares,
                   usd_value = excluded.usd_value,
                   lock_weeks = excluded.lock_weeks,
                   block_number = excluded.block_number,
                   created_at = excluded.created_at
               WHERE excluded.block_number >= vault_positions.block_number""",
            (
                wallet,
                vault,
                asset_symbol.upper(),
                chain,
                _parse_amount(balance, "balance"),
                _parse_amount(shares, "shares"),
                usd_value,
                lock_weeks,
                day,
                block_number,
                now,
            ),
        )
        conn.commit()
        row = conn.execute(
            """SELECT * FROM vault_positions
               WHERE wallet_address = ? AND vault_address = ? AND snapshot_date = ?""",
            (wallet, vault, day),
        ).fetchone()
        position = _row_to_position(row)
    finally:
        conn.close()

    if position.block_number != block_number:
        logger.info(
            "Ignored stale snapshot for %s/%s on %s (block %d < %d)",
            wallet, vault, day, block_number, position.block_number,
        )
    return position


def get_position_history(
    wallet_address: str,
    vault_address: str | None = None,
    start: date | str | None = None,
    end: date | str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[VaultPosition]:
    """Snapshots for a wallet, oldest day first. start/end are inclusive days."""
    sql = "SELECT * FROM vault_positions WHERE wallet_address = ?"
    params: list[object] = [normalize_address(wallet_address)]
    if vault_address:
        sql += " AND vault_address = ?"
        params.append(normalize_address(vault_address))
    if start:
        sql += " AND snapshot_date >= ?"
        params.append(snapshot_day(start))
    if end:
        sql += " AND snapshot_date <= ?"
        params.append(snapshot_day(end))
    conn = _connect(db_path)
    try:
        rows = conn.execute(sql + " ORDER BY snapshot_date ASC, vault_address ASC", params).fetchall()
        return [_row_to_position(r) for r in rows]
    finally:
        conn.close()


def positions_for_day(
    day: date | str,
    chain: str | None = None,
    wallet_address: str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[VaultPosition]:
    sql = "SELECT * FROM vault_positions WHERE snapshot_date = ?"
    params: list[object] = [snapshot_day(day)]
    if chain:
        sql += " AND chain = ?"
        params.append(chain.lower())
    if wallet_address:
        sql += " AND wallet_address = ?"
        params.append(normalize_address(wallet_address))
    conn = _connect(db_path)
    try:
        rows = conn.execute(sql + " ORDER BY wallet_address, vault_address", params).fetchall()
        return [_row_to_position(r) for r in rows]
    finally:
        conn.close()


def staking_for_day(
    wallet_address: str,
    season: Season,
    day: date | str,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> tuple[float, list[VaultBreakdownEntry]]:
    """Staking shards a wallet earns for one day of a season, with per-vault breakdown."""
    breakdown: list[VaultBreakdownEntry] = []
    for position in positions_for_day(day, season.chain, wallet_address, db_path=db_path):
        shards = position_shards(position, lifecycle.vault_rate(season, position.asset_symbol))
        if shards <= 0:
            continue
        breakdown.append(
            VaultBreakdownEntry(
                vault_address=position.vault_address,
                asset_symbol=position.asset_symbol,
                chain=position.chain,
                usd_value=position.usd_value,
                lock_weeks=position.lock_weeks,
                shards_earned=shards,
            )
        )
    return sum(e.shards_earned for e in breakdown), breakdown
