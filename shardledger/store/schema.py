"""Database schema DDL and the shared connection helper.

Every store module opens its own short-lived connection through _connect();
concurrent writers from the job runner queue on the SQLite busy timeout.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent.parent / "data" / "shards.db"

BUSY_TIMEOUT_SEC = 30.0

SEASONS_SQL = """
CREATE TABLE IF NOT EXISTS seasons (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    name                TEXT NOT NULL,
    chain               TEXT NOT NULL,
    start_date          TEXT NOT NULL,
    end_date            TEXT,
    status              TEXT NOT NULL DEFAULT 'upcoming',
    config_json         TEXT NOT NULL DEFAULT '{}',
    total_participants  INTEGER NOT NULL DEFAULT 0,
    total_shards_issued REAL NOT NULL DEFAULT 0.0,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);
"""

LEDGER_SQL = """
CREATE TABLE IF NOT EXISTS shard_balances (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_address      TEXT NOT NULL,
    season_id           INTEGER NOT NULL REFERENCES seasons(id),
    staking_shards      REAL NOT NULL DEFAULT 0.0,
    social_shards       REAL NOT NULL DEFAULT 0.0,
    developer_shards    REAL NOT NULL DEFAULT 0.0,
    referral_shards     REAL NOT NULL DEFAULT 0.0,
    total_shards        REAL NOT NULL DEFAULT 0.0,
    last_calculated_at  TEXT NOT NULL,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    UNIQUE(wallet_address, season_id)
);

CREATE TABLE IF NOT EXISTS shard_ledger_entries (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    event_key       TEXT NOT NULL UNIQUE,
    wallet_address  TEXT NOT NULL,
    season_id       INTEGER NOT NULL,
    category        TEXT NOT NULL,
    amount          REAL NOT NULL,
    created_at      TEXT NOT NULL
);
"""

VAULT_POSITIONS_SQL = """
CREATE TABLE IF NOT EXISTS vault_positions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_address  TEXT NOT NULL,
    vault_address   TEXT NOT NULL,
    asset_symbol    TEXT NOT NULL,
    chain           TEXT NOT NULL,
    balance         TEXT NOT NULL,
    shares          TEXT NOT NULL,
    usd_value       REAL NOT NULL,
    lock_weeks      INTEGER NOT NULL DEFAULT 4,
    snapshot_date   TEXT NOT NULL,
    block_number    INTEGER NOT NULL,
    created_at      TEXT NOT NULL,
    UNIQUE(wallet_address, vault_address, snapshot_date)
);
"""

EARNING_HISTORY_SQL = """
CREATE TABLE IF NOT EXISTS shard_earning_history (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_address          TEXT NOT NULL,
    season_id               INTEGER NOT NULL,
    date                    TEXT NOT NULL,
    staking_shards          REAL NOT NULL DEFAULT 0.0,
    social_shards           REAL NOT NULL DEFAULT 0.0,
    developer_shards        REAL NOT NULL DEFAULT 0.0,
    referral_shards         REAL NOT NULL DEFAULT 0.0,
    daily_total             REAL NOT NULL DEFAULT 0.0,
    cumulative_staking      REAL NOT NULL DEFAULT 0.0,
    cumulative_social       REAL NOT NULL DEFAULT 0.0,
    cumulative_developer    REAL NOT NULL DEFAULT 0.0,
    cumulative_referral     REAL NOT NULL DEFAULT 0.0,
    vault_breakdown_json    TEXT NOT NULL DEFAULT '[]',
    metadata_json           TEXT NOT NULL DEFAULT '{}',
    created_at              TEXT NOT NULL,
    UNIQUE(wallet_address, date, season_id)
);
"""

REFERRALS_SQL = """
CREATE TABLE IF NOT EXISTS referrals (
    id                          INTEGER PRIMARY KEY AUTOINCREMENT,
    referrer_address            TEXT NOT NULL,
    referee_address             TEXT NOT NULL,
    season_id                   INTEGER NOT NULL,
    status                      TEXT NOT NULL DEFAULT 'pending',
    activation_date             TEXT,
    referee_multiplier_expires  TEXT,
    total_shards_earned         REAL NOT NULL DEFAULT 0.0,
    created_at                  TEXT NOT NULL,
    updated_at                  TEXT NOT NULL,
    CHECK (referrer_address != referee_address),
    UNIQUE(referee_address, season_id)
);
"""

DEVELOPER_CONTRIBUTIONS_SQL = """
CREATE TABLE IF NOT EXISTS developer_contributions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet_address  TEXT NOT NULL,
    season_id       INTEGER NOT NULL,
    action_type     TEXT NOT NULL,
    reference       TEXT NOT NULL,
    base_reward     REAL NOT NULL,
    shards_awarded  REAL NOT NULL,
    details_json    TEXT NOT NULL DEFAULT '{}',
    verified_at     TEXT NOT NULL,
    UNIQUE(season_id, action_type, reference)
);
"""

SYNC_JOBS_SQL = """
CREATE TABLE IF NOT EXISTS sync_jobs (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    job_type        TEXT NOT NULL,
    dedupe_key      TEXT NOT NULL UNIQUE,
    payload_json    TEXT NOT NULL DEFAULT '{}',
    status          TEXT NOT NULL DEFAULT 'pending',
    attempts        INTEGER NOT NULL DEFAULT 0,
    next_attempt_at TEXT NOT NULL,
    last_error      TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);
"""


def _ensure_indexes(conn: sqlite3.Connection) -> None:
    """Create lookup indexes and the one-active-season-per-chain guard."""
    indexes = [
        # 同一チェーンで active なシーズンは最大 1 つ
        "CREATE UNIQUE INDEX IF NOT EXISTS uq_seasons_active_chain"
        " ON seasons(chain) WHERE status = 'active'",
        "CREATE INDEX IF NOT EXISTS idx_seasons_chain_status ON seasons(chain, status)",
        "CREATE INDEX IF NOT EXISTS idx_balances_season_total"
        " ON shard_balances(season_id, total_shards DESC)",
        "CREATE INDEX IF NOT EXISTS idx_ledger_entries_wallet"
        " ON shard_ledger_entries(wallet_address, season_id)",
        "CREATE INDEX IF NOT EXISTS idx_vault_positions_date ON vault_positions(snapshot_date)",
        "CREATE INDEX IF NOT EXISTS idx_earning_history_season_date"
        " ON shard_earning_history(season_id, date)",
        "CREATE INDEX IF NOT EXISTS idx_referrals_referrer"
        " ON referrals(referrer_address, season_id)",
        "CREATE INDEX IF NOT EXISTS idx_dev_contributions_wallet"
        " ON developer_contributions(wallet_address, season_id)",
        "CREATE INDEX IF NOT EXISTS idx_sync_jobs_due ON sync_jobs(status, next_attempt_at)",
    ]
    for sql in indexes:
        conn.execute(sql)
    conn.commit()


def _connect(db_path: Path | str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Open (or create) the SQLite database and ensure schema exists."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=BUSY_TIMEOUT_SEC)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.executescript(SEASONS_SQL)
    conn.executescript(LEDGER_SQL)
    conn.executescript(VAULT_POSITIONS_SQL)
    conn.executescript(EARNING_HISTORY_SQL)
    conn.executescript(REFERRALS_SQL)
    conn.executescript(DEVELOPER_CONTRIBUTIONS_SQL)
    conn.executescript(SYNC_JOBS_SQL)
    _ensure_indexes(conn)
    return conn
