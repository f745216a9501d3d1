"""Referral bookkeeping: creation rules, activation and the bonus window."""

from __future__ import annotations

import logging
import re
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

from shardledger.config import settings
from shardledger.errors import (
    ConstraintViolation,
    DuplicateReferral,
    InvalidTransition,
    NotFound,
    RefereeAlreadyEarning,
    ReferralLimitReached,
    SelfReferral,
)
from shardledger.ledger.balances import normalize_address
from shardledger.store.models import Referral, ReferralInfo, ReferralStatus
from shardledger.store.schema import DEFAULT_DB_PATH, _connect

logger = logging.getLogger(__name__)

REFERRAL_CODE_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def _row_to_referral(row: sqlite3.Row) -> Referral:
    data = dict(row)
    data["status"] = ReferralStatus(data["status"])
    return Referral(**data)


def _fetch(conn: sqlite3.Connection, referral_id: int) -> Referral:
    row = conn.execute("SELECT * FROM referrals WHERE id = ?", (referral_id,)).fetchone()
    if row is None:
        raise NotFound("referral", referral_id)
    return _row_to_referral(row)


def _total_shards(conn: sqlite3.Connection, wallet: str, season_id: int) -> float:
    row = conn.execute(
        "SELECT total_shards FROM shard_balances WHERE wallet_address = ? AND season_id = ?",
        (wallet, season_id),
    ).fetchone()
    return row["total_shards"] if row else 0.0


def find_bonus_referral(
    conn: sqlite3.Connection,
    referee: str,
    season_id: int,
    now_iso: str,
) -> Referral | None:
    """Active referral for `referee` whose multiplier window is still open at now_iso."""
    row = conn.execute(
        """SELECT * FROM referrals
           WHERE referee_address = ? AND season_id = ?
             AND status = 'active' AND referee_multiplier_expires > ?""",
        (referee, season_id, now_iso),
    ).fetchone()
    return _row_to_referral(row) if row else None


def create_referral(
    referrer_address: str,
    referee_address: str,
    season_id: int,
    now: datetime | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> Referral:
    """Register referee as referred by referrer for a season.

    Raises SelfReferral, DuplicateReferral, ReferralLimitReached or
    RefereeAlreadyEarning.
    """
    referrer = normalize_address(referrer_address)
    referee = normalize_address(referee_address)
    if referrer == referee:
        raise SelfReferral(f"{referee} cannot refer itself")

    now_iso = (now or datetime.now(timezone.utc)).isoformat()
    conn = _connect(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        existing = conn.execute(
            "SELECT id FROM referrals WHERE referee_address = ? AND season_id = ?",
            (referee, season_id),
        ).fetchone()
        if existing:
            raise DuplicateReferral(f"{referee} already referred in season {season_id}")

        count = conn.execute(
            "SELECT COUNT(*) FROM referrals WHERE referrer_address = ? AND season_id = ?",
            (referrer, season_id),
        ).fetchone()[0]
        if count >= settings.referral_max_per_wallet:
            raise ReferralLimitReached(
                f"{referrer} reached {settings.referral_max_per_wallet} referrals in season {season_id}"
            )

        if _total_shards(conn, referee, season_id) > 0:
            raise RefereeAlreadyEarning(f"{referee} already earned shards in season {season_id}")

        try:
            cur = conn.execute(
                """INSERT INTO referrals
                   (referrer_address, referee_address, season_id, status,
                    total_shards_earned, created_at, updated_at)
                   VALUES (?, ?, ?, 'pending', 0.0, ?, ?)""",
                (referrer, referee, season_id, now_iso, now_iso),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateReferral(f"{referee} already referred in season {season_id}") from e
        conn.commit()
        logger.info("Referral %d: %s → %s (season %d)", cur.lastrowid, referrer, referee, season_id)
        return _fetch(conn, cur.lastrowid)
    finally:
        conn.close()


def get_referral(referral_id: int, db_path: Path | str = DEFAULT_DB_PATH) -> Referral:
    conn = _connect(db_path)
    try:
        return _fetch(conn, referral_id)
    finally:
        conn.close()


def find_by_referee(
    referee_address: str,
    season_id: int,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> Referral | None:
    conn = _connect(db_path)
    try:
        row = conn.execute(
            "SELECT * FROM referrals WHERE referee_address = ? AND season_id = ?",
            (normalize_address(referee_address), season_id),
        ).fetchone()
        return _row_to_referral(row) if row else None
    finally:
        conn.close()


def list_referrals_by_referrer(
    referrer_address: str,
    season_id: int,
    status: ReferralStatus | str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[Referral]:
    sql = "SELECT * FROM referrals WHERE referrer_address = ? AND season_id = ?"
    params: list[object] = [normalize_address(referrer_address), season_id]
    if status:
        sql += " AND status = ?"
        params.append(str(status))
    conn = _connect(db_path)
    try:
        rows = conn.execute(sql + " ORDER BY created_at ASC, id ASC", params).fetchall()
        return [_row_to_referral(r) for r in rows]
    finally:
        conn.close()


def activate_referral(
    referral_id: int,
    now: datetime | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> Referral:
    """pending → active once the referee reaches the activation threshold.

    Opens the referee multiplier window for referral_window_days.
    """
    now = now or datetime.now(timezone.utc)
    expires = now + timedelta(days=settings.referral_window_days)
    conn = _connect(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        referral = _fetch(conn, referral_id)
        if referral.status != ReferralStatus.PENDING:
            raise InvalidTransition("referral", referral.status, "activate")

        earned = _total_shards(conn, referral.referee_address, referral.season_id)
        if earned < settings.referral_activation_threshold:
            raise ConstraintViolation(
                f"referee {referral.referee_address} has {earned:.2f} shards,"
                f" needs {settings.referral_activation_threshold:.2f} to activate"
            )

        conn.execute(
            """UPDATE referrals
               SET status = 'active', activation_date = ?, referee_multiplier_expires = ?,
                   updated_at = ?
               WHERE id = ? AND status = 'pending'""",
            (now.isoformat(), expires.isoformat(), now.isoformat(), referral_id),
        )
        conn.commit()
        logger.info("Referral %d activated until %s", referral_id, expires.date())
        return _fetch(conn, referral_id)
    finally:
        conn.close()


def activate_pending_referrals(
    season_id: int,
    now: datetime | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> int:
    """Activate every pending referral whose referee has crossed the threshold."""
    conn = _connect(db_path)
    try:
        rows = conn.execute(
            """SELECT r.id FROM referrals r
               JOIN shard_balances b
                 ON b.wallet_address = r.referee_address AND b.season_id = r.season_id
               WHERE r.season_id = ? AND r.status = 'pending' AND b.total_shards >= ?""",
            (season_id, settings.referral_activation_threshold),
        ).fetchall()
    finally:
        conn.close()

    activated = 0
    for r in rows:
        try:
            activate_referral(r["id"], now, db_path=db_path)
            activated += 1
        except InvalidTransition:
            # 並行実行で先に有効化済み
            continue
    return activated


def expire_outdated_bonuses(
    now: datetime | None = None,
    season_id: int | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> int:
    """active → expired for referrals whose multiplier window has closed."""
    now_iso = (now or datetime.now(timezone.utc)).isoformat()
    sql = """UPDATE referrals
             SET status = 'expired', updated_at = ?
             WHERE status = 'active' AND referee_multiplier_expires <= ?"""
    params: list[object] = [now_iso, now_iso]
    if season_id is not None:
        sql += " AND season_id = ?"
        params.append(season_id)
    conn = _connect(db_path)
    try:
        cur = conn.execute(sql, params)
        conn.commit()
        if cur.rowcount:
            logger.info("Expired %d referral bonus windows", cur.rowcount)
        return cur.rowcount
    finally:
        conn.close()


def get_referral_info(
    wallet_address: str,
    season_id: int,
    now: datetime | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> ReferralInfo:
    """Both sides of a wallet's referral picture for one season."""
    wallet = normalize_address(wallet_address)
    now_iso = (now or datetime.now(timezone.utc)).isoformat()
    referred = find_by_referee(wallet, season_id, db_path=db_path)
    referrals = list_referrals_by_referrer(wallet, season_id, db_path=db_path)

    multiplier_active = bool(
        referred
        and referred.status == ReferralStatus.ACTIVE
        and referred.referee_multiplier_expires
        and referred.referee_multiplier_expires > now_iso
    )
    return ReferralInfo(
        wallet_address=wallet,
        season_id=season_id,
        referred_by=referred.referrer_address if referred else None,
        referral_count=len(referrals),
        active_referrals=sum(1 for r in referrals if r.status == ReferralStatus.ACTIVE),
        pending_referrals=sum(1 for r in referrals if r.status == ReferralStatus.PENDING),
        total_bonus_earned=sum(r.total_shards_earned for r in referrals),
        multiplier_active=multiplier_active,
        multiplier_expires=referred.referee_multiplier_expires if multiplier_active else None,
        referrals=referrals,
    )


def validate_referral_code(
    code: str,
    season_id: int,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> str | None:
    """A referral code is the referrer's address. Returns it normalised, or None if unusable."""
    code = code.strip()
    if not REFERRAL_CODE_RE.match(code):
        return None
    referrer = normalize_address(code)
    conn = _connect(db_path)
    try:
        row = conn.execute(
            "SELECT 1 FROM shard_balances WHERE wallet_address = ? AND season_id = ?",
            (referrer, season_id),
        ).fetchone()
        return referrer if row else None
    finally:
        conn.close()
