"""Data models for the SQLite store.

Dataclasses and enums only, no DB access.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class SeasonStatus(StrEnum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"


class Category(StrEnum):
    STAKING = "staking"
    SOCIAL = "social"
    DEVELOPER = "developer"
    REFERRAL = "referral"

    @property
    def column(self) -> str:
        """shard_balances column holding this category."""
        return _CATEGORY_COLUMNS[self]


_CATEGORY_COLUMNS = {
    Category.STAKING: "staking_shards",
    Category.SOCIAL: "social_shards",
    Category.DEVELOPER: "developer_shards",
    Category.REFERRAL: "referral_shards",
}

# Leaderboard ordering key: a category column, or the total when category is None
RANK_COLUMNS = {None: "total_shards", **{c: c.column for c in Category}}


class ReferralStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"


class JobStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    REJECTED = "rejected"
    FAILED = "failed"


class JobType(StrEnum):
    VAULT_SNAPSHOT = "vault_snapshot"
    SOCIAL_SYNC = "social_sync"
    DEVELOPER_PR = "developer_pr"
    DEVELOPER_COMMIT = "developer_commit"
    CONTRACT_DEPLOY = "contract_deploy"


SUPPORTED_CHAINS = ("ethereum", "base", "arbitrum", "optimism")


# ---------------------------------------------------------------------------
# Seasons
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SeasonConfig:
    vault_rates: dict[str, int] = field(default_factory=dict)
    social_conversion_rate: int = 100
    vault_locked: bool = True
    withdrawal_enabled: bool = False
    redeem_period_days: int | None = 14

    def to_json(self) -> str:
        return json.dumps(
            {
                "vault_rates": self.vault_rates,
                "social_conversion_rate": self.social_conversion_rate,
                "vault_locked": self.vault_locked,
                "withdrawal_enabled": self.withdrawal_enabled,
                "redeem_period_days": self.redeem_period_days,
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str | None) -> SeasonConfig:
        data = json.loads(raw) if raw else {}
        return cls(
            vault_rates={k: int(v) for k, v in data.get("vault_rates", {}).items()},
            social_conversion_rate=int(data.get("social_conversion_rate", 100)),
            vault_locked=bool(data.get("vault_locked", True)),
            withdrawal_enabled=bool(data.get("withdrawal_enabled", False)),
            redeem_period_days=data.get("redeem_period_days", 14),
        )


@dataclass(frozen=True)
class Season:
    id: int | None
    name: str
    chain: str
    start_date: datetime
    end_date: datetime | None
    status: SeasonStatus
    config: SeasonConfig
    total_participants: int
    total_shards_issued: float
    created_at: datetime
    updated_at: datetime


@dataclass
class SeasonProgress:
    season_id: int
    status: SeasonStatus
    days_elapsed: int
    days_remaining: int | None  # None when the season has no end date
    progress_pct: float | None


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@dataclass
class ShardBalance:
    id: int
    wallet_address: str
    season_id: int
    staking_shards: float
    social_shards: float
    developer_shards: float
    referral_shards: float
    total_shards: float
    last_calculated_at: str
    created_at: str
    updated_at: str

    def category_amount(self, category: Category | None) -> float:
        if category is None:
            return self.total_shards
        return getattr(self, category.column)

    @property
    def category_sum(self) -> float:
        return self.staking_shards + self.social_shards + self.developer_shards + self.referral_shards


@dataclass
class LeaderboardPage:
    entries: list[ShardBalance]
    total: int


@dataclass
class LeaderboardEntry:
    rank: int
    wallet_address: str
    shards: float
    balance: ShardBalance


@dataclass
class WalletStanding:
    rank: int
    shards: float
    percentile: float  # share of participants ranked at or below this wallet


@dataclass
class Leaderboard:
    season_id: int
    category: Category | None
    entries: list[LeaderboardEntry]
    total_participants: int
    page: int
    limit: int
    total_pages: int
    wallet: WalletStanding | None = None


# ---------------------------------------------------------------------------
# Vault positions
# ---------------------------------------------------------------------------


@dataclass
class VaultPosition:
    id: int
    wallet_address: str
    vault_address: str
    asset_symbol: str
    chain: str
    balance: str
    shares: str
    usd_value: float
    lock_weeks: int
    snapshot_date: str
    block_number: int
    created_at: str

    def has_balance(self) -> bool:
        return int(self.balance) != 0 and int(self.shares) != 0


@dataclass
class VaultBreakdownEntry:
    vault_address: str
    asset_symbol: str
    chain: str
    usd_value: float
    lock_weeks: int
    shards_earned: float


# ---------------------------------------------------------------------------
# Earning history
# ---------------------------------------------------------------------------


@dataclass
class EarningHistory:
    id: int
    wallet_address: str
    season_id: int
    date: str
    staking_shards: float
    social_shards: float
    developer_shards: float
    referral_shards: float
    daily_total: float
    cumulative_staking: float
    cumulative_social: float
    cumulative_developer: float
    cumulative_referral: float
    vault_breakdown: list[dict]
    metadata: dict
    created_at: str


@dataclass
class HistorySummary:
    total_days: int
    total_shards: float
    average_daily: float
    by_category: dict[str, float]


@dataclass
class DailyAverages:
    days: int
    average_daily: float
    by_category: dict[str, float]
    trend: str  # "up" | "down" | "stable"
    trend_pct: float


# ---------------------------------------------------------------------------
# Referrals
# ---------------------------------------------------------------------------


@dataclass
class Referral:
    id: int
    referrer_address: str
    referee_address: str
    season_id: int
    status: ReferralStatus
    activation_date: str | None
    referee_multiplier_expires: str | None
    total_shards_earned: float
    created_at: str
    updated_at: str


@dataclass
class ReferralInfo:
    wallet_address: str
    season_id: int
    referred_by: str | None
    referral_count: int
    active_referrals: int
    pending_referrals: int
    total_bonus_earned: float
    multiplier_active: bool
    multiplier_expires: str | None
    referrals: list[Referral] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


@dataclass
class SyncJob:
    id: int
    job_type: str
    dedupe_key: str
    payload: dict
    status: str
    attempts: int
    next_attempt_at: str
    last_error: str | None
    created_at: str
    updated_at: str


@dataclass
class JobSummary:
    pending: int = 0
    running: int = 0
    done: int = 0
    rejected: int = 0
    failed: int = 0
