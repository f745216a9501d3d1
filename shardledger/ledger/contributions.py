"""Developer and social contribution awards.

Developer rewards decay with repetition of the same action type within a
season and gain a bonus for breadth across action types. Each contribution
(season, action, reference) is rewarded at most once.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path

from shardledger.ledger.awards import AwardResult, award_in_transaction, award_shards, round_shards
from shardledger.ledger.balances import _fetch_balance, normalize_address
from shardledger.store.models import Category
from shardledger.store.schema import DEFAULT_DB_PATH, _connect

logger = logging.getLogger(__name__)


class DeveloperAction(StrEnum):
    DEPLOY_CONTRACT = "deploy_contract"
    DEPLOY_DAPP = "deploy_dapp"
    VERIFIED_CONTRACT = "verified_contract"
    CONTRIBUTE_CODE = "contribute_code"
    FIX_BUG = "fix_bug"
    COMPLETE_BOUNTY = "complete_bounty"
    CREATE_DOCUMENTATION = "create_documentation"


BASE_REWARDS: dict[DeveloperAction, float] = {
    DeveloperAction.DEPLOY_CONTRACT: 500,
    DeveloperAction.DEPLOY_DAPP: 500,
    DeveloperAction.VERIFIED_CONTRACT: 200,
    DeveloperAction.CONTRIBUTE_CODE: 100,
    DeveloperAction.FIX_BUG: 200,
    DeveloperAction.COMPLETE_BOUNTY: 300,
    DeveloperAction.CREATE_DOCUMENTATION: 50,
}


@dataclass
class DeveloperContribution:
    id: int
    wallet_address: str
    season_id: int
    action_type: str
    reference: str
    base_reward: float
    shards_awarded: float
    details: dict
    verified_at: str


def repetition_multiplier(same_type_count: int) -> float:
    """Scale by how many contributions of this type were already rewarded this season."""
    if same_type_count == 0:
        return 1.5
    if same_type_count < 3:
        return 1.2
    if same_type_count < 5:
        return 1.0
    if same_type_count < 10:
        return 0.8
    return 0.5


def diversity_bonus(distinct_types: int) -> float:
    if distinct_types >= 5:
        return 0.3
    if distinct_types >= 3:
        return 0.15
    return 0.0


def adjusted_reward(base_reward: float, same_type_count: int, distinct_types: int) -> float:
    return float(round(base_reward * (repetition_multiplier(same_type_count) + diversity_bonus(distinct_types))))


def developer_event_key(season_id: int, action: DeveloperAction | str, reference: str) -> str:
    return f"developer:{season_id}:{action}:{reference.lower()}"


def _row_to_contribution(row: sqlite3.Row) -> DeveloperContribution:
    data = dict(row)
    data["details"] = json.loads(data.pop("details_json") or "{}")
    return DeveloperContribution(**data)


def record_developer_contribution(
    wallet_address: str,
    season_id: int,
    action: DeveloperAction | str,
    reference: str,
    details: dict | None = None,
    now: datetime | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> AwardResult:
    """Award a verified developer contribution.

    `reference` identifies the contribution (PR URL, commit sha, contract
    address). A contribution already rewarded this season returns an
    AwardResult with applied=False.
    """
    action = DeveloperAction(action)
    wallet = normalize_address(wallet_address)
    reference = reference.strip().lower()
    now_iso = (now or datetime.now(timezone.utc)).isoformat()

    conn = _connect(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        exists = conn.execute(
            """SELECT 1 FROM developer_contributions
               WHERE season_id = ? AND action_type = ? AND reference = ?""",
            (season_id, action, reference),
        ).fetchone()
        if exists:
            conn.rollback()
            logger.info("Developer contribution %s %s already rewarded", action, reference)
            return AwardResult(
                wallet_address=wallet,
                season_id=season_id,
                category=Category.DEVELOPER,
                applied=False,
                credited=0.0,
            )

        rows = conn.execute(
            """SELECT action_type, COUNT(*) AS cnt FROM developer_contributions
               WHERE wallet_address = ? AND season_id = ?
               GROUP BY action_type""",
            (wallet, season_id),
        ).fetchall()
        counts = {r["action_type"]: r["cnt"] for r in rows}
        base = BASE_REWARDS[action]
        reward = adjusted_reward(base, counts.get(action, 0), len(counts))

        result = award_in_transaction(
            conn,
            wallet,
            season_id,
            Category.DEVELOPER,
            reward,
            developer_event_key(season_id, action, reference),
            now_iso,
        )
        conn.execute(
            """INSERT INTO developer_contributions
               (wallet_address, season_id, action_type, reference, base_reward,
                shards_awarded, details_json, verified_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (wallet, season_id, action, reference, base, result.credited,
             json.dumps(details or {}, sort_keys=True), now_iso),
        )
        result.balance = _fetch_balance(conn, wallet, season_id)
        conn.commit()
    finally:
        conn.close()

    logger.info(
        "Developer %s for %s: %.0f shards (base %.0f)", action, wallet, result.credited, base
    )
    return result


def list_developer_contributions(
    wallet_address: str,
    season_id: int,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[DeveloperContribution]:
    conn = _connect(db_path)
    try:
        rows = conn.execute(
            """SELECT * FROM developer_contributions
               WHERE wallet_address = ? AND season_id = ?
               ORDER BY verified_at ASC, id ASC""",
            (normalize_address(wallet_address), season_id),
        ).fetchall()
        return [_row_to_contribution(r) for r in rows]
    finally:
        conn.close()


def social_shards(points: float, conversion_rate: int) -> float:
    """Engagement points → shards at `conversion_rate` points per shard."""
    if points <= 0 or conversion_rate <= 0:
        return 0.0
    return round_shards(points / conversion_rate)


def record_social_points(
    wallet_address: str,
    season_id: int,
    points: float,
    conversion_rate: int,
    period: str,
    now: datetime | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> AwardResult:
    """Award social shards for one reporting period; repeated periods are ignored."""
    wallet = normalize_address(wallet_address)
    return award_shards(
        wallet,
        season_id,
        Category.SOCIAL,
        social_shards(points, conversion_rate),
        event_key=f"social:{season_id}:{wallet}:{period}",
        now=now,
        db_path=db_path,
    )
