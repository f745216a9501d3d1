"""Once-a-day season rollover.

Order matters: statuses advance first, staking shards for the closed day
are awarded, referrals that crossed the threshold activate, then every
wallet's history row is written and expired bonus windows close. Every step
is idempotent, so a rollover re-run for the same day changes nothing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from shardledger.errors import ConstraintViolation
from shardledger.history.recorder import record_daily_snapshot
from shardledger.ledger.awards import award_shards
from shardledger.ledger.balances import list_season_wallets
from shardledger.referrals.ledger import activate_pending_referrals, expire_outdated_bonuses
from shardledger.seasons.store import advance_season_statuses, get_season, refresh_season_stats
from shardledger.store.models import Category, Season, SeasonStatus, VaultBreakdownEntry
from shardledger.store.schema import DEFAULT_DB_PATH
from shardledger.vaults.snapshotter import positions_for_day, snapshot_day, staking_for_day

logger = logging.getLogger(__name__)


@dataclass
class RolloverSummary:
    season_id: int
    day: str
    seasons_changed: list[int] = field(default_factory=list)
    staking_awards: int = 0
    staking_shards: float = 0.0
    skipped_wallets: list[str] = field(default_factory=list)
    referrals_activated: int = 0
    history_rows: int = 0
    referrals_expired: int = 0
    total_participants: int = 0
    total_shards_issued: float = 0.0


def staking_event_key(season_id: int, wallet: str, day: str) -> str:
    return f"staking:{season_id}:{wallet}:{day}"


def _day_in_season(season: Season, day: str) -> bool:
    d = date.fromisoformat(day)
    if d < season.start_date.date():
        return False
    return season.end_date is None or d < season.end_date.date()


def award_staking_for_day(
    season: Season,
    day: str,
    summary: RolloverSummary,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> dict[str, list[VaultBreakdownEntry]]:
    """Award each wallet's staking shards for `day`. Returns the vault breakdown per wallet."""
    wallets = sorted({p.wallet_address for p in positions_for_day(day, season.chain, db_path=db_path)})
    breakdowns: dict[str, list[VaultBreakdownEntry]] = {}
    for wallet in wallets:
        shards, breakdown = staking_for_day(wallet, season, day, db_path=db_path)
        if shards <= 0:
            continue
        try:
            result = award_shards(
                wallet,
                season.id,
                Category.STAKING,
                shards,
                event_key=staking_event_key(season.id, wallet, day),
                db_path=db_path,
            )
        except ConstraintViolation as e:
            logger.error("Staking award for %s on %s skipped: %s", wallet, day, e)
            summary.skipped_wallets.append(wallet)
            continue
        breakdowns[wallet] = breakdown
        if result.applied:
            summary.staking_awards += 1
            summary.staking_shards += result.credited
    return breakdowns


def run_daily_rollover(
    season_id: int,
    day: date | str | None = None,
    now: datetime | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> RolloverSummary:
    """Close `day` (default: yesterday UTC) for a season."""
    now = now or datetime.now(timezone.utc)
    day = snapshot_day(day or (now - timedelta(days=1)))
    summary = RolloverSummary(season_id=season_id, day=day)

    summary.seasons_changed = [s.id for s in advance_season_statuses(now, db_path=db_path)]
    season = get_season(season_id, db_path)

    breakdowns: dict[str, list[VaultBreakdownEntry]] = {}
    if season.status != SeasonStatus.UPCOMING and _day_in_season(season, day):
        breakdowns = award_staking_for_day(season, day, summary, db_path=db_path)
    else:
        logger.info("Season %d does not cover %s, no staking awards", season_id, day)

    summary.referrals_activated = activate_pending_referrals(season_id, now, db_path=db_path)

    for wallet in list_season_wallets(season_id, db_path=db_path):
        try:
            record_daily_snapshot(
                wallet,
                season_id,
                day,
                vault_breakdown=breakdowns.get(wallet),
                metadata={"rollover_at": now.isoformat()},
                db_path=db_path,
            )
        except ConstraintViolation as e:
            logger.error("History for %s on %s skipped: %s", wallet, day, e)
            if wallet not in summary.skipped_wallets:
                summary.skipped_wallets.append(wallet)
            continue
        summary.history_rows += 1

    summary.referrals_expired = expire_outdated_bonuses(now, season_id, db_path=db_path)

    refreshed = refresh_season_stats(season_id, db_path=db_path)
    summary.total_participants = refreshed.total_participants
    summary.total_shards_issued = refreshed.total_shards_issued

    logger.info(
        "Rollover season %d %s: staking=%d (%.2f shards) history=%d referrals +%d/-%d",
        season_id, day, summary.staking_awards, summary.staking_shards,
        summary.history_rows, summary.referrals_activated, summary.referrals_expired,
    )
    return summary
