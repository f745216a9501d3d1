"""Earning path: credit verified shards with referral effects applied.

A referee inside an open multiplier window is credited amount × multiplier,
and its referrer earns bonus_rate × amount into the referral bucket until the
per-referral cap is reached. Both credits and the referral's running total
commit in one transaction. Corrections and reversals go through
balances.add_shards() directly and carry no referral effects.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from shardledger.config import settings
from shardledger.errors import ConstraintViolation
from shardledger.ledger.balances import _fetch_balance, apply_delta, normalize_address
from shardledger.referrals.ledger import find_bonus_referral
from shardledger.store.models import Category, ShardBalance
from shardledger.store.schema import DEFAULT_DB_PATH, _connect

logger = logging.getLogger(__name__)

# Largest single award accepted per category; anything above is a data error
MAX_AWARD_PER_CATEGORY = {
    Category.STAKING: 100_000.0,
    Category.SOCIAL: 10_000.0,
    Category.DEVELOPER: 5_000.0,
    Category.REFERRAL: 500.0,
}


@dataclass
class AwardResult:
    wallet_address: str
    season_id: int
    category: Category
    applied: bool  # False when event_key was already recorded
    credited: float
    referee_multiplier: float = 1.0
    referrer_address: str | None = None
    referrer_bonus: float = 0.0
    balance: ShardBalance | None = None


def round_shards(amount: float) -> float:
    return round(amount, 2)


def validate_award_amount(amount: float, category: Category) -> None:
    if amount < 0:
        raise ValueError("awards must be non-negative; use add_shards for corrections")
    cap = MAX_AWARD_PER_CATEGORY[category]
    if amount > cap:
        raise ConstraintViolation(f"{category} award {amount:.2f} exceeds {cap:.2f}")


def award_in_transaction(
    conn: sqlite3.Connection,
    wallet: str,
    season_id: int,
    category: Category,
    amount: float,
    event_key: str | None,
    now_iso: str,
) -> AwardResult:
    """Apply an award on an open connection; the caller commits."""
    referral = None
    if category != Category.REFERRAL and amount > 0:
        referral = find_bonus_referral(conn, wallet, season_id, now_iso)

    multiplier = settings.referral_referee_multiplier if referral else 1.0
    credited = round_shards(amount * multiplier)
    result = AwardResult(
        wallet_address=wallet,
        season_id=season_id,
        category=category,
        applied=False,
        credited=credited,
        referee_multiplier=multiplier,
    )
    if not apply_delta(conn, wallet, season_id, category, credited, event_key):
        result.credited = 0.0
        return result
    result.applied = True

    if referral is not None:
        headroom = settings.referral_max_bonus_per_referral - referral.total_shards_earned
        bonus = round_shards(min(amount * settings.referral_bonus_rate, headroom))
        if bonus > 0:
            bonus_key = f"{event_key}:referrer" if event_key else None
            apply_delta(conn, referral.referrer_address, season_id, Category.REFERRAL, bonus, bonus_key)
            conn.execute(
                """UPDATE referrals
                   SET total_shards_earned = total_shards_earned + ?, updated_at = ?
                   WHERE id = ?""",
                (bonus, now_iso, referral.id),
            )
            result.referrer_address = referral.referrer_address
            result.referrer_bonus = bonus
    return result


def award_shards(
    wallet_address: str,
    season_id: int,
    category: Category | str,
    amount: float,
    *,
    event_key: str | None = None,
    now: datetime | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> AwardResult:
    """Credit a verified, non-negative amount of shards to a wallet."""
    category = Category(category)
    amount = round_shards(amount)
    validate_award_amount(amount, category)
    wallet = normalize_address(wallet_address)
    now_iso = (now or datetime.now(timezone.utc)).isoformat()

    conn = _connect(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        result = award_in_transaction(conn, wallet, season_id, category, amount, event_key, now_iso)
        result.balance = _fetch_balance(conn, wallet, season_id)
        conn.commit()
    finally:
        conn.close()

    if result.applied:
        logger.info(
            "Awarded %.2f %s shards to %s (season %d, x%.2f)",
            result.credited, category, wallet, season_id, result.referee_multiplier,
        )
        if result.referrer_bonus:
            logger.info("Referrer %s earned %.2f bonus shards", result.referrer_address, result.referrer_bonus)
    else:
        logger.info("Award %s already recorded, skipped", event_key)
    return result
