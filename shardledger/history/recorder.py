"""Append-only daily earning history.

Each row stores the per-category change since the wallet's previous snapshot
in the season, plus the cumulative values that change was measured against.
Rows are written once per (wallet, date, season) and never updated.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import asdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from shardledger.config import settings
from shardledger.errors import ConstraintViolation, NotFound
from shardledger.ledger.balances import normalize_address
from shardledger.store.models import (
    Category,
    DailyAverages,
    EarningHistory,
    HistorySummary,
    VaultBreakdownEntry,
)
from shardledger.store.schema import DEFAULT_DB_PATH, _connect
from shardledger.vaults.snapshotter import snapshot_day

logger = logging.getLogger(__name__)

TREND_THRESHOLD_PCT = 5.0
ANOMALY_LOOKBACK_DAYS = 30


def _row_to_history(row: sqlite3.Row) -> EarningHistory:
    data = dict(row)
    data["vault_breakdown"] = json.loads(data.pop("vault_breakdown_json") or "[]")
    data["metadata"] = json.loads(data.pop("metadata_json") or "{}")
    return EarningHistory(**data)


def _fetch(conn: sqlite3.Connection, wallet: str, season_id: int, day: str) -> EarningHistory | None:
    row = conn.execute(
        """SELECT * FROM shard_earning_history
           WHERE wallet_address = ? AND date = ? AND season_id = ?""",
        (wallet, day, season_id),
    ).fetchone()
    return _row_to_history(row) if row else None


def _anomaly_flags(conn: sqlite3.Connection, wallet: str, season_id: int, day: str, daily_total: float) -> list[str]:
    """Flags for earnings far outside the wallet's recent pattern. Informational only."""
    since = (date.fromisoformat(day) - timedelta(days=ANOMALY_LOOKBACK_DAYS)).isoformat()
    avg = conn.execute(
        """SELECT AVG(daily_total) FROM shard_earning_history
           WHERE wallet_address = ? AND season_id = ? AND date >= ? AND date < ?""",
        (wallet, season_id, since, day),
    ).fetchone()[0]
    flags: list[str] = []
    if not avg:
        if daily_total > settings.anomaly_first_day_limit:
            flags.append(f"first-time earner with {daily_total:.2f} shards")
        return flags
    ratio = daily_total / avg
    if ratio > settings.anomaly_variance_threshold:
        flags.append(f"daily earnings {ratio:.1f}x the {ANOMALY_LOOKBACK_DAYS}-day average ({avg:.2f})")
    return flags


def record_daily_snapshot(
    wallet_address: str,
    season_id: int,
    day: date | str,
    vault_breakdown: list[VaultBreakdownEntry] | None = None,
    metadata: dict | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> EarningHistory:
    """Write the day's history row for a wallet, or return the one already stored."""
    wallet = normalize_address(wallet_address)
    day = snapshot_day(day)
    now = datetime.now(timezone.utc).isoformat()
    conn = _connect(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        existing = _fetch(conn, wallet, season_id, day)
        if existing is not None:
            conn.rollback()
            logger.info("History for %s on %s already recorded", wallet, day)
            return existing

        # balance は現在値なので、過去日の後追い記録は二重計上になる
        later = conn.execute(
            """SELECT MAX(date) FROM shard_earning_history
               WHERE wallet_address = ? AND season_id = ? AND date > ?""",
            (wallet, season_id, day),
        ).fetchone()[0]
        if later is not None:
            raise ConstraintViolation(f"history for {wallet} already closed past {day} (latest {later})")

        bal = conn.execute(
            """SELECT staking_shards, social_shards, developer_shards, referral_shards
               FROM shard_balances WHERE wallet_address = ? AND season_id = ?""",
            (wallet, season_id),
        ).fetchone()
        if bal is None:
            raise NotFound("balance", (wallet, season_id))

        prev = conn.execute(
            """SELECT cumulative_staking, cumulative_social, cumulative_developer, cumulative_referral
               FROM shard_earning_history
               WHERE wallet_address = ? AND season_id = ? AND date < ?
               ORDER BY date DESC LIMIT 1""",
            (wallet, season_id, day),
        ).fetchone()
        base = tuple(prev) if prev else (0.0, 0.0, 0.0, 0.0)
        deltas = [current - earlier for current, earlier in zip(tuple(bal), base)]
        daily_total = sum(deltas)

        meta = dict(metadata or {})
        flags = _anomaly_flags(conn, wallet, season_id, day, daily_total)
        if flags:
            meta["anomaly_flags"] = flags
            logger.warning("Unusual earnings for %s on %s: %s", wallet, day, "; ".join(flags))

        conn.execute(
            """INSERT INTO shard_earning_history
               (wallet_address, season_id, date,
                staking_shards, social_shards, developer_shards, referral_shards, daily_total,
                cumulative_staking, cumulative_social, cumulative_developer, cumulative_referral,
                vault_breakdown_json, metadata_json, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                wallet,
                season_id,
                day,
                *deltas,
                daily_total,
                *tuple(bal),
                json.dumps([asdict(e) for e in vault_breakdown or []]),
                json.dumps(meta, sort_keys=True),
                now,
            ),
        )
        conn.commit()
        return _fetch(conn, wallet, season_id, day)
    finally:
        conn.close()


def get_daily_snapshot(
    wallet_address: str,
    season_id: int,
    day: date | str,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> EarningHistory | None:
    conn = _connect(db_path)
    try:
        return _fetch(conn, normalize_address(wallet_address), season_id, snapshot_day(day))
    finally:
        conn.close()


def _history_filter(
    wallet_address: str,
    season_id: int | None,
    start: date | str | None,
    end: date | str | None,
) -> tuple[str, list[object]]:
    where = "wallet_address = ?"
    params: list[object] = [normalize_address(wallet_address)]
    if season_id is not None:
        where += " AND season_id = ?"
        params.append(season_id)
    if start:
        where += " AND date >= ?"
        params.append(snapshot_day(start))
    if end:
        where += " AND date <= ?"
        params.append(snapshot_day(end))
    return where, params


def get_earning_history(
    wallet_address: str,
    season_id: int | None = None,
    start: date | str | None = None,
    end: date | str | None = None,
    limit: int = 30,
    offset: int = 0,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[EarningHistory]:
    """History rows for a wallet, newest day first."""
    where, params = _history_filter(wallet_address, season_id, start, end)
    conn = _connect(db_path)
    try:
        rows = conn.execute(
            f"SELECT * FROM shard_earning_history WHERE {where} ORDER BY date DESC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        ).fetchall()
        return [_row_to_history(r) for r in rows]
    finally:
        conn.close()


def get_history_summary(
    wallet_address: str,
    season_id: int | None = None,
    start: date | str | None = None,
    end: date | str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> HistorySummary:
    where, params = _history_filter(wallet_address, season_id, start, end)
    conn = _connect(db_path)
    try:
        row = conn.execute(
            f"""SELECT COUNT(*) AS days,
                       COALESCE(SUM(daily_total), 0.0) AS total,
                       COALESCE(SUM(staking_shards), 0.0) AS staking,
                       COALESCE(SUM(social_shards), 0.0) AS social,
                       COALESCE(SUM(developer_shards), 0.0) AS developer,
                       COALESCE(SUM(referral_shards), 0.0) AS referral
                FROM shard_earning_history WHERE {where}""",
            params,
        ).fetchone()
    finally:
        conn.close()
    days = row["days"]
    return HistorySummary(
        total_days=days,
        total_shards=row["total"],
        average_daily=row["total"] / days if days else 0.0,
        by_category={c.value: row[c.value] for c in Category},
    )


def _window_average(
    conn: sqlite3.Connection,
    wallet: str,
    season_id: int,
    start: str,
    end: str,
) -> tuple[float, dict[str, float]]:
    """Mean daily values over (start, end]."""
    row = conn.execute(
        """SELECT COALESCE(AVG(daily_total), 0.0) AS total,
                  COALESCE(AVG(staking_shards), 0.0) AS staking,
                  COALESCE(AVG(social_shards), 0.0) AS social,
                  COALESCE(AVG(developer_shards), 0.0) AS developer,
                  COALESCE(AVG(referral_shards), 0.0) AS referral
           FROM shard_earning_history
           WHERE wallet_address = ? AND season_id = ? AND date > ? AND date <= ?""",
        (wallet, season_id, start, end),
    ).fetchone()
    return row["total"], {c.value: row[c.value] for c in Category}


def get_daily_averages(
    wallet_address: str,
    season_id: int,
    days: int = 7,
    as_of: date | str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> DailyAverages:
    """Average daily earnings over the last `days` days and the trend versus the window before."""
    if days < 1:
        raise ValueError("days must be positive")
    wallet = normalize_address(wallet_address)
    end = date.fromisoformat(snapshot_day(as_of or datetime.now(timezone.utc)))
    mid = end - timedelta(days=days)
    start = mid - timedelta(days=days)

    conn = _connect(db_path)
    try:
        recent, by_category = _window_average(conn, wallet, season_id, mid.isoformat(), end.isoformat())
        previous, _ = _window_average(conn, wallet, season_id, start.isoformat(), mid.isoformat())
    finally:
        conn.close()

    if previous > 0:
        change = (recent - previous) / previous * 100
    else:
        change = 100.0 if recent > 0 else 0.0

    if change > TREND_THRESHOLD_PCT:
        trend = "up"
    elif change < -TREND_THRESHOLD_PCT:
        trend = "down"
    else:
        trend = "stable"

    return DailyAverages(
        days=days,
        average_daily=recent,
        by_category=by_category,
        trend=trend,
        trend_pct=round(change, 2),
    )


def get_top_earners_by_date(
    season_id: int,
    day: date | str,
    limit: int = 10,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[EarningHistory]:
    conn = _connect(db_path)
    try:
        rows = conn.execute(
            """SELECT * FROM shard_earning_history
               WHERE season_id = ? AND date = ?
               ORDER BY daily_total DESC, wallet_address ASC
               LIMIT ?""",
            (season_id, snapshot_day(day), limit),
        ).fetchall()
        return [_row_to_history(r) for r in rows]
    finally:
        conn.close()
