"""Season persistence.

Transitions are written with a compare-and-set on the previous status, and
the partial unique index uq_seasons_active_chain rejects a second active
season on the same chain even when two activations race.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from shardledger.errors import (
    ActiveSeasonConflict,
    InvalidTransition,
    NotFound,
    SeasonOverlap,
)
from shardledger.seasons import lifecycle
from shardledger.store.models import Season, SeasonConfig, SeasonProgress, SeasonStatus
from shardledger.store.schema import DEFAULT_DB_PATH, _connect

logger = logging.getLogger(__name__)


def _row_to_season(row: sqlite3.Row) -> Season:
    return Season(
        id=row["id"],
        name=row["name"],
        chain=row["chain"],
        start_date=datetime.fromisoformat(row["start_date"]),
        end_date=datetime.fromisoformat(row["end_date"]) if row["end_date"] else None,
        status=SeasonStatus(row["status"]),
        config=SeasonConfig.from_json(row["config_json"]),
        total_participants=row["total_participants"],
        total_shards_issued=row["total_shards_issued"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _fetch(conn: sqlite3.Connection, season_id: int) -> Season:
    row = conn.execute("SELECT * FROM seasons WHERE id = ?", (season_id,)).fetchone()
    if row is None:
        raise NotFound("season", season_id)
    return _row_to_season(row)


def insert_season(season: Season, db_path: Path | str = DEFAULT_DB_PATH) -> Season:
    """Persist a new season built by lifecycle.create_season().

    Raises SeasonOverlap when its dates intersect another upcoming or active
    season on the same chain.
    """
    conn = _connect(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        rows = conn.execute(
            "SELECT * FROM seasons WHERE chain = ? AND status IN ('upcoming', 'active')",
            (season.chain,),
        ).fetchall()
        for r in rows:
            other = _row_to_season(r)
            if lifecycle.overlaps(other, season.start_date, season.end_date):
                conn.rollback()
                raise SeasonOverlap(
                    f"season '{season.name}' overlaps season {other.id} ({other.name}) on {season.chain}"
                )
        try:
            cur = conn.execute(
                """INSERT INTO seasons
                   (name, chain, start_date, end_date, status, config_json,
                    total_participants, total_shards_issued, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    season.name,
                    season.chain,
                    season.start_date.isoformat(),
                    season.end_date.isoformat() if season.end_date else None,
                    season.status,
                    season.config.to_json(),
                    season.total_participants,
                    season.total_shards_issued,
                    season.created_at.isoformat(),
                    season.updated_at.isoformat(),
                ),
            )
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise ActiveSeasonConflict(f"chain {season.chain} already has an active season") from e
        conn.commit()
        logger.info("Created season %d (%s) on %s", cur.lastrowid, season.name, season.chain)
        return _fetch(conn, cur.lastrowid)
    finally:
        conn.close()


def get_season(season_id: int, db_path: Path | str = DEFAULT_DB_PATH) -> Season:
    conn = _connect(db_path)
    try:
        return _fetch(conn, season_id)
    finally:
        conn.close()


def list_seasons(
    chain: str | None = None,
    status: SeasonStatus | str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[Season]:
    clauses: list[str] = []
    params: list[object] = []
    if chain:
        clauses.append("chain = ?")
        params.append(chain.lower())
    if status:
        clauses.append("status = ?")
        params.append(str(status))
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    conn = _connect(db_path)
    try:
        rows = conn.execute(
            f"SELECT * FROM seasons {where} ORDER BY start_date DESC, id DESC", params
        ).fetchall()
        return [_row_to_season(r) for r in rows]
    finally:
        conn.close()


def get_current_season(chain: str, db_path: Path | str = DEFAULT_DB_PATH) -> Season | None:
    """The active season on a chain, if any."""
    conn = _connect(db_path)
    try:
        row = conn.execute(
            "SELECT * FROM seasons WHERE chain = ? AND status = 'active'",
            (chain.lower(),),
        ).fetchone()
        return _row_to_season(row) if row else None
    finally:
        conn.close()


def _write_transition(
    conn: sqlite3.Connection,
    updated: Season,
    expected: SeasonStatus,
    action: str,
) -> None:
    try:
        cur = conn.execute(
            """UPDATE seasons
               SET status = ?, end_date = ?, updated_at = ?
               WHERE id = ? AND status = ?""",
            (
                updated.status,
                updated.end_date.isoformat() if updated.end_date else None,
                updated.updated_at.isoformat(),
                updated.id,
                expected,
            ),
        )
    except sqlite3.IntegrityError as e:
        conn.rollback()
        raise ActiveSeasonConflict(
            f"chain {updated.chain} already has an active season"
        ) from e
    if cur.rowcount == 0:
        # 別プロセスが先に遷移させた
        conn.rollback()
        current = _fetch(conn, updated.id)
        raise InvalidTransition("season", current.status, action)
    conn.commit()


def activate_season(
    season_id: int,
    now: datetime | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> Season:
    conn = _connect(db_path)
    try:
        season = _fetch(conn, season_id)
        updated = lifecycle.activate(season, now)
        _write_transition(conn, updated, SeasonStatus.UPCOMING, "activate")
        logger.info("Season %d (%s) activated on %s", season_id, season.name, season.chain)
        return updated
    finally:
        conn.close()


def complete_season(
    season_id: int,
    end_date: datetime | None = None,
    now: datetime | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> Season:
    now = now or datetime.now(timezone.utc)
    conn = _connect(db_path)
    try:
        season = _fetch(conn, season_id)
        updated = lifecycle.complete(season, end_date or season.end_date or now, now)
        _write_transition(conn, updated, SeasonStatus.ACTIVE, "complete")
        logger.info("Season %d (%s) completed", season_id, season.name)
        return updated
    finally:
        conn.close()


def update_season_config(
    season_id: int,
    config: SeasonConfig,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> Season:
    conn = _connect(db_path)
    try:
        updated = lifecycle.update_config(_fetch(conn, season_id), config)
        conn.execute(
            "UPDATE seasons SET config_json = ?, updated_at = ? WHERE id = ?",
            (config.to_json(), updated.updated_at.isoformat(), season_id),
        )
        conn.commit()
        return updated
    finally:
        conn.close()


def refresh_season_stats(season_id: int, db_path: Path | str = DEFAULT_DB_PATH) -> Season:
    """Recompute participants (wallets with shards) and total shards issued."""
    conn = _connect(db_path)
    try:
        season = _fetch(conn, season_id)
        row = conn.execute(
            """SELECT COALESCE(SUM(CASE WHEN total_shards > 0 THEN 1 ELSE 0 END), 0) AS participants,
                      COALESCE(SUM(total_shards), 0.0) AS issued
               FROM shard_balances WHERE season_id = ?""",
            (season_id,),
        ).fetchone()
        updated = lifecycle.update_stats(season, row["participants"], row["issued"])
        conn.execute(
            """UPDATE seasons
               SET total_participants = ?, total_shards_issued = ?, updated_at = ?
               WHERE id = ?""",
            (
                updated.total_participants,
                updated.total_shards_issued,
                updated.updated_at.isoformat(),
                season_id,
            ),
        )
        conn.commit()
        return updated
    finally:
        conn.close()


def advance_season_statuses(
    now: datetime | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[Season]:
    """Complete seasons past their end date, then activate seasons that have started.

    Completion runs first so back-to-back seasons on one chain hand over in a
    single pass. An activation blocked by another active season is logged and
    left upcoming.
    """
    now = lifecycle.ensure_utc(now or datetime.now(timezone.utc))
    changed: list[Season] = []

    for season in list_seasons(status=SeasonStatus.ACTIVE, db_path=db_path):
        if lifecycle.due_status(season, now) == SeasonStatus.COMPLETED:
            changed.append(complete_season(season.id, season.end_date, now, db_path=db_path))

    upcoming = sorted(
        list_seasons(status=SeasonStatus.UPCOMING, db_path=db_path),
        key=lambda s: s.start_date,
    )
    for season in upcoming:
        if lifecycle.due_status(season, now) != SeasonStatus.ACTIVE:
            continue
        try:
            changed.append(activate_season(season.id, now, db_path=db_path))
        except ActiveSeasonConflict:
            logger.warning(
                "Season %d (%s) is due but %s already has an active season",
                season.id, season.name, season.chain,
            )
    return changed


def season_progress(
    season_id: int,
    now: datetime | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> SeasonProgress:
    return lifecycle.progress(get_season(season_id, db_path), now)
