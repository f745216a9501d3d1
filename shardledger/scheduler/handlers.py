"""Job handlers: verify a contribution with its provider, then record it.

Handlers raise domain errors and let the job runner decide what they mean
for the job: VerificationUnavailable is retried, other ShardErrors are
terminal rejections. Every write they make is keyed so a re-run is a no-op.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from shardledger.connectors import chain as chain_verifier
from shardledger.connectors import github, price_feed
from shardledger.errors import InvalidTransition, VerificationFailed, VerificationUnavailable
from shardledger.ledger.contributions import (
    DeveloperAction,
    developer_event_key,
    record_developer_contribution,
    record_social_points,
)
from shardledger.seasons import lifecycle
from shardledger.seasons.store import get_season
from shardledger.store.db import enqueue_job
from shardledger.store.models import JobType, Season, SeasonStatus
from shardledger.store.schema import DEFAULT_DB_PATH
from shardledger.vaults.snapshotter import record_snapshot, snapshot_day

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_DECIMALS = 18


def _active_season(season_id: int, db_path: Path | str) -> Season:
    season = get_season(season_id, db_path)
    if season.status != SeasonStatus.ACTIVE:
        raise InvalidTransition("season", season.status, "award shards in")
    return season


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def handle_vault_snapshot(payload: dict, db_path: Path | str = DEFAULT_DB_PATH) -> str:
    """Record a vault position; values it from the price feed when usd_value is absent."""
    usd_value = payload.get("usd_value")
    if usd_value is None:
        quote = price_feed.get_price(payload["asset_symbol"])
        if quote is None:
            raise VerificationFailed(price_feed.PROVIDER, f"no price for {payload['asset_symbol']}")
        if quote.is_stale():
            raise VerificationUnavailable(
                price_feed.PROVIDER,
                f"{quote.asset} price is {quote.age_minutes():.0f} minutes old",
            )
        decimals = int(payload.get("decimals", DEFAULT_TOKEN_DECIMALS))
        usd_value = int(payload["balance"]) / 10**decimals * quote.usd_price

    position = record_snapshot(
        wallet_address=payload["wallet_address"],
        vault_address=payload["vault_address"],
        asset_symbol=payload["asset_symbol"],
        chain=payload["chain"],
        balance=payload["balance"],
        shares=payload["shares"],
        usd_value=float(usd_value),
        lock_weeks=int(payload.get("lock_weeks", 4)),
        snapshot_at=payload["snapshot_at"],
        block_number=int(payload["block_number"]),
        db_path=db_path,
    )
    return f"snapshot {position.wallet_address}/{position.vault_address} {position.snapshot_date} ${position.usd_value:.2f}"


def handle_social_sync(payload: dict, db_path: Path | str = DEFAULT_DB_PATH) -> str:
    season = _active_season(int(payload["season_id"]), db_path)
    result = record_social_points(
        payload["wallet_address"],
        season.id,
        float(payload["points"]),
        lifecycle.social_conversion_rate(season),
        payload["period"],
        db_path=db_path,
    )
    return f"social +{result.credited:.2f} (applied={result.applied})"


def _handle_github(payload: dict, db_path: Path | str, default_action: DeveloperAction) -> str:
    season = _active_season(int(payload["season_id"]), db_path)
    ref = github.parse_contribution_url(payload["url"])
    if ref is None:
        raise VerificationFailed(github.PROVIDER, f"not a GitHub PR or commit URL: {payload['url']}")

    github.verify_contribution_url(payload["url"], payload.get("github_username")).raise_for_status()

    result = record_developer_contribution(
        payload["wallet_address"],
        season.id,
        payload.get("action", default_action),
        ref.reference,
        details={"url": payload["url"], "kind": ref.kind},
        db_path=db_path,
    )
    return f"developer +{result.credited:.0f} (applied={result.applied})"


def handle_developer_pr(payload: dict, db_path: Path | str = DEFAULT_DB_PATH) -> str:
    return _handle_github(payload, db_path, DeveloperAction.CONTRIBUTE_CODE)


def handle_developer_commit(payload: dict, db_path: Path | str = DEFAULT_DB_PATH) -> str:
    return _handle_github(payload, db_path, DeveloperAction.CONTRIBUTE_CODE)


def handle_contract_deploy(payload: dict, db_path: Path | str = DEFAULT_DB_PATH) -> str:
    season = _active_season(int(payload["season_id"]), db_path)
    result = chain_verifier.verify_contract_deployment(
        payload["chain"],
        payload["tx_hash"],
        payload["contract_address"],
        payload["wallet_address"],
    )
    result.raise_for_status()

    award = record_developer_contribution(
        payload["wallet_address"],
        season.id,
        payload.get("action", DeveloperAction.DEPLOY_CONTRACT),
        payload["contract_address"],
        details={
            "chain": payload["chain"],
            "tx_hash": payload["tx_hash"],
            "source_verified": result.details.get("source_verified"),
        },
        db_path=db_path,
    )
    return f"deploy +{award.credited:.0f} (applied={award.applied})"


HANDLERS: dict[str, Callable[[dict, Path | str], str]] = {
    JobType.VAULT_SNAPSHOT: handle_vault_snapshot,
    JobType.SOCIAL_SYNC: handle_social_sync,
    JobType.DEVELOPER_PR: handle_developer_pr,
    JobType.DEVELOPER_COMMIT: handle_developer_commit,
    JobType.CONTRACT_DEPLOY: handle_contract_deploy,
}


# ---------------------------------------------------------------------------
# Enqueue helpers (dedupe keys mirror the ledger event keys)
# ---------------------------------------------------------------------------


def enqueue_vault_snapshot(
    *,
    wallet_address: str,
    vault_address: str,
    asset_symbol: str,
    chain: str,
    balance: str,
    shares: str,
    block_number: int,
    snapshot_at: str | None = None,
    lock_weeks: int = 4,
    usd_value: float | None = None,
    decimals: int = DEFAULT_TOKEN_DECIMALS,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> bool:
    snapshot_at = snapshot_at or datetime.now(timezone.utc).isoformat()
    payload = {
        "wallet_address": wallet_address.lower(),
        "vault_address": vault_address.lower(),
        "asset_symbol": asset_symbol,
        "chain": chain,
        "balance": str(balance),
        "shares": str(shares),
        "block_number": block_number,
        "snapshot_at": snapshot_at,
        "lock_weeks": lock_weeks,
        "decimals": decimals,
    }
    if usd_value is not None:
        payload["usd_value"] = usd_value
    key = f"vault:{payload['wallet_address']}:{payload['vault_address']}:{snapshot_day(snapshot_at)}:{block_number}"
    return enqueue_job(JobType.VAULT_SNAPSHOT, key, payload, db_path=db_path)


def enqueue_social_sync(
    wallet_address: str,
    season_id: int,
    points: float,
    period: str,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> bool:
    wallet = wallet_address.lower()
    payload = {"wallet_address": wallet, "season_id": season_id, "points": points, "period": period}
    return enqueue_job(JobType.SOCIAL_SYNC, f"social:{season_id}:{wallet}:{period}", payload, db_path=db_path)


def enqueue_github_contribution(
    wallet_address: str,
    season_id: int,
    url: str,
    github_username: str | None = None,
    action: DeveloperAction | str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> bool:
    ref = github.parse_contribution_url(url)
    if ref is None:
        raise ValueError(f"not a GitHub PR or commit URL: {url}")
    job_type = JobType.DEVELOPER_PR if ref.kind == "pull" else JobType.DEVELOPER_COMMIT
    action = DeveloperAction(action or DeveloperAction.CONTRIBUTE_CODE)
    payload = {
        "wallet_address": wallet_address.lower(),
        "season_id": season_id,
        "url": url,
        "action": str(action),
    }
    if github_username:
        payload["github_username"] = github_username
    return enqueue_job(job_type, developer_event_key(season_id, action, ref.reference), payload, db_path=db_path)


def enqueue_contract_deploy(
    wallet_address: str,
    season_id: int,
    chain_name: str,
    tx_hash: str,
    contract_address: str,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> bool:
    payload = {
        "wallet_address": wallet_address.lower(),
        "season_id": season_id,
        "chain": chain_name.lower(),
        "tx_hash": tx_hash,
        "contract_address": contract_address.lower(),
        "action": str(DeveloperAction.DEPLOY_CONTRACT),
    }
    key = developer_event_key(season_id, DeveloperAction.DEPLOY_CONTRACT, contract_address)
    return enqueue_job(JobType.CONTRACT_DEPLOY, key, payload, db_path=db_path)
