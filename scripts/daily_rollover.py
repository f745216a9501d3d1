#!/usr/bin/env python3
"""Daily rollover: award staking shards, write earning history, roll referrals.

Usage:
    # Close yesterday (UTC) for the active season on base
    python scripts/daily_rollover.py --chain base

    # Re-run a specific day for a season (idempotent). Wallets whose history
    # already has a later day are skipped and the script exits 1.
    python scripts/daily_rollover.py --season 3 --date 2026-03-14
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

log = logging.getLogger(__name__)


def main() -> None:
    from shardledger.logging_config import setup_logging
    from shardledger.scheduler.daily import run_daily_rollover
    from shardledger.seasons.store import advance_season_statuses, get_current_season
    from shardledger.store.db_path import resolve_db_path

    parser = argparse.ArgumentParser(description="Daily shard rollover")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--season", type=int, help="Season id")
    target.add_argument("--chain", type=str, help="Use the chain's active season")
    parser.add_argument("--date", type=str, default=None, help="Day YYYY-MM-DD (default: yesterday UTC)")
    parser.add_argument("--db", type=str, default=None, help="SQLite path (default: settings)")
    parser.add_argument("--structured", action="store_true", help="JSON file logs")
    args = parser.parse_args()

    run_id = setup_logging(structured=args.structured)
    db_path = resolve_db_path(args.db)
    log.info("=== Daily rollover (run_id=%s) ===", run_id)

    season_id = args.season
    if season_id is None:
        advance_season_statuses(db_path=db_path)
        season = get_current_season(args.chain, db_path=db_path)
        if season is None:
            log.warning("No active season on %s, nothing to do", args.chain)
            return
        season_id = season.id

    summary = run_daily_rollover(season_id, args.date, db_path=db_path)
    log.info(
        "Season %d %s: participants=%d issued=%.2f staking_awards=%d skipped=%d",
        summary.season_id,
        summary.day,
        summary.total_participants,
        summary.total_shards_issued,
        summary.staking_awards,
        len(summary.skipped_wallets),
    )
    if summary.skipped_wallets:
        sys.exit(1)


if __name__ == "__main__":
    main()
