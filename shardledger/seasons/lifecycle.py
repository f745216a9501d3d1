"""Season state machine as pure functions over immutable Season values.

upcoming --activate--> active --complete--> completed

Every operation returns a new Season; persistence lives in seasons.store.
"""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import datetime, timezone

from shardledger.config import settings
from shardledger.errors import InvalidTransition
from shardledger.store.models import (
    SUPPORTED_CHAINS,
    Season,
    SeasonConfig,
    SeasonProgress,
    SeasonStatus,
)

# Shards per $1000 staked, Season 1 rates
DEFAULT_VAULT_RATES: dict[str, int] = {
    "ILV": 80,
    "ILV/ETH": 150,
    "ETH": 150,
    "BTC": 150,
    "USDT": 100,
    "USDC": 100,
    "DAI": 100,
}


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def default_config() -> SeasonConfig:
    return SeasonConfig(
        vault_rates=dict(DEFAULT_VAULT_RATES),
        social_conversion_rate=settings.default_social_conversion_rate,
        vault_locked=True,
        withdrawal_enabled=False,
        redeem_period_days=settings.default_redeem_period_days,
    )


def create_season(
    name: str,
    chain: str,
    start_date: datetime,
    end_date: datetime | None = None,
    config: SeasonConfig | None = None,
    now: datetime | None = None,
) -> Season:
    """Build a new upcoming season with zeroed statistics."""
    chain = chain.lower()
    if chain not in SUPPORTED_CHAINS:
        raise ValueError(f"unsupported chain: {chain}")
    start_date = ensure_utc(start_date)
    if end_date is not None:
        end_date = ensure_utc(end_date)
        if end_date <= start_date:
            raise ValueError("end_date must be after start_date")
    now = ensure_utc(now or datetime.now(timezone.utc))
    return Season(
        id=None,
        name=name,
        chain=chain,
        start_date=start_date,
        end_date=end_date,
        status=SeasonStatus.UPCOMING,
        config=config or default_config(),
        total_participants=0,
        total_shards_issued=0.0,
        created_at=now,
        updated_at=now,
    )


def activate(season: Season, now: datetime | None = None) -> Season:
    if season.status != SeasonStatus.UPCOMING:
        raise InvalidTransition("season", season.status, "activate")
    now = ensure_utc(now or datetime.now(timezone.utc))
    return replace(season, status=SeasonStatus.ACTIVE, updated_at=now)


def complete(season: Season, end_date: datetime, now: datetime | None = None) -> Season:
    if season.status != SeasonStatus.ACTIVE:
        raise InvalidTransition("season", season.status, "complete")
    now = ensure_utc(now or datetime.now(timezone.utc))
    return replace(
        season,
        status=SeasonStatus.COMPLETED,
        end_date=ensure_utc(end_date),
        updated_at=now,
    )


def update_stats(
    season: Season,
    total_participants: int,
    total_shards_issued: float,
    now: datetime | None = None,
) -> Season:
    """Statistic refresh. Allowed in every status, including completed."""
    now = ensure_utc(now or datetime.now(timezone.utc))
    return replace(
        season,
        total_participants=total_participants,
        total_shards_issued=total_shards_issued,
        updated_at=now,
    )


def update_config(season: Season, config: SeasonConfig, now: datetime | None = None) -> Season:
    if season.status == SeasonStatus.COMPLETED:
        raise InvalidTransition("season", season.status, "reconfigure")
    now = ensure_utc(now or datetime.now(timezone.utc))
    return replace(season, config=config, updated_at=now)


def vault_rate(season: Season, asset_symbol: str) -> int:
    """Shards per $1000 for an asset; unknown or zero rates fall back to the default."""
    rates = season.config.vault_rates
    rate = rates.get(asset_symbol) or rates.get(asset_symbol.upper())
    return rate or settings.default_vault_rate


def social_conversion_rate(season: Season) -> int:
    return season.config.social_conversion_rate or settings.default_social_conversion_rate


def is_live(season: Season, now: datetime) -> bool:
    """True when `now` falls inside the season's date range."""
    now = ensure_utc(now)
    if now < season.start_date:
        return False
    return season.end_date is None or now < season.end_date


def overlaps(season: Season, start_date: datetime, end_date: datetime | None) -> bool:
    """Half-open interval overlap; a missing end date extends forever."""
    start_date = ensure_utc(start_date)
    ends_after_start = season.end_date is None or season.end_date > start_date
    starts_before_end = end_date is None or season.start_date < ensure_utc(end_date)
    return ends_after_start and starts_before_end


def due_status(season: Season, now: datetime) -> SeasonStatus | None:
    """Status the season should move to at `now`, or None when it is current."""
    now = ensure_utc(now)
    if season.status == SeasonStatus.UPCOMING and season.start_date <= now:
        if season.end_date is None or now < season.end_date:
            return SeasonStatus.ACTIVE
    if season.status == SeasonStatus.ACTIVE and season.end_date is not None:
        if season.end_date <= now:
            return SeasonStatus.COMPLETED
    return None


def progress(season: Season, now: datetime | None = None) -> SeasonProgress:
    now = ensure_utc(now or datetime.now(timezone.utc))
    elapsed = max(0, (now - season.start_date).days)
    if season.end_date is None:
        return SeasonProgress(
            season_id=season.id,
            status=season.status,
            days_elapsed=elapsed,
            days_remaining=None,
            progress_pct=None,
        )

    span = (season.end_date - season.start_date).total_seconds()
    done = (now - season.start_date).total_seconds()
    pct = min(100.0, max(0.0, done / span * 100.0))
    remaining = max(0, math.ceil((season.end_date - now).total_seconds() / 86400))
    return SeasonProgress(
        season_id=season.id,
        status=season.status,
        days_elapsed=elapsed,
        days_remaining=remaining,
        progress_pct=round(pct, 2),
    )
