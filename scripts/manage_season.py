#!/usr/bin/env python3
"""Season administration.

Usage:
    # Create an upcoming season on base (dates are UTC)
    python scripts/manage_season.py create --name "Season 2" --chain base --start 2026-11-01 --end 2027-02-01

    # Override vault rates (shards per $1000)
    python scripts/manage_season.py create --name S3 --chain base --start 2027-02-01 --rate ILV=100 --rate ETH=200

    # Transitions
    python scripts/manage_season.py activate 2
    python scripts/manage_season.py complete 1

    # Move every season to the status its dates call for
    python scripts/manage_season.py advance

    # Inspect
    python scripts/manage_season.py list --chain base
    python scripts/manage_season.py progress 2
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger(__name__)


def _parse_rates(pairs: list[str]) -> dict[str, int]:
    rates: dict[str, int] = {}
    for pair in pairs:
        asset, _, value = pair.partition("=")
        if not value:
            raise SystemExit(f"bad --rate '{pair}', expected ASSET=N")
        rates[asset.upper()] = int(value)
    return rates


def main() -> None:
    from dataclasses import replace

    from shardledger.errors import ShardError
    from shardledger.seasons import lifecycle
    from shardledger.seasons.store import (
        activate_season,
        advance_season_statuses,
        complete_season,
        insert_season,
        list_seasons,
        refresh_season_stats,
        season_progress,
    )
    from shardledger.store.db_path import resolve_db_path

    parser = argparse.ArgumentParser(description="Manage shard seasons")
    parser.add_argument("--db", type=str, default=None, help="SQLite path (default: settings)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_create = sub.add_parser("create", help="Create an upcoming season")
    p_create.add_argument("--name", required=True)
    p_create.add_argument("--chain", required=True)
    p_create.add_argument("--start", required=True, help="Start date (ISO)")
    p_create.add_argument("--end", default=None, help="End date (ISO, optional)")
    p_create.add_argument("--rate", action="append", default=[], help="ASSET=shards per $1000")
    p_create.add_argument("--social-rate", type=int, default=None)

    sub.add_parser("activate", help="Activate an upcoming season").add_argument("season_id", type=int)
    p_complete = sub.add_parser("complete", help="Complete an active season")
    p_complete.add_argument("season_id", type=int)
    p_complete.add_argument("--end", default=None, help="End date (default: now or scheduled)")

    p_list = sub.add_parser("list", help="List seasons")
    p_list.add_argument("--chain", default=None)
    p_list.add_argument("--status", default=None)

    sub.add_parser("advance", help="Apply date-driven transitions")
    sub.add_parser("progress", help="Show progress and stats").add_argument("season_id", type=int)

    args = parser.parse_args()
    db_path = resolve_db_path(args.db)

    try:
        if args.command == "create":
            config = lifecycle.default_config()
            if args.rate:
                config = replace(config, vault_rates={**config.vault_rates, **_parse_rates(args.rate)})
            if args.social_rate:
                config = replace(config, social_conversion_rate=args.social_rate)
            season = lifecycle.create_season(
                args.name,
                args.chain,
                datetime.fromisoformat(args.start),
                datetime.fromisoformat(args.end) if args.end else None,
                config,
            )
            season = insert_season(season, db_path=db_path)
            log.info("Created season %d: %s (%s) %s", season.id, season.name, season.chain, season.status)

        elif args.command == "activate":
            season = activate_season(args.season_id, db_path=db_path)
            log.info("Season %d is %s", season.id, season.status)

        elif args.command == "complete":
            end = datetime.fromisoformat(args.end) if args.end else None
            season = complete_season(args.season_id, end, db_path=db_path)
            log.info("Season %d is %s (ended %s)", season.id, season.status, season.end_date)

        elif args.command == "list":
            for s in list_seasons(args.chain, args.status, db_path=db_path):
                end = s.end_date.date().isoformat() if s.end_date else "-"
                log.info(
                    "%4d  %-10s %-9s %-20s %s → %s  wallets=%d shards=%.2f",
                    s.id, s.chain, s.status, s.name, s.start_date.date().isoformat(), end,
                    s.total_participants, s.total_shards_issued,
                )

        elif args.command == "advance":
            changed = advance_season_statuses(db_path=db_path)
            for s in changed:
                log.info("Season %d (%s) → %s", s.id, s.name, s.status)
            log.info("%d season(s) changed", len(changed))

        elif args.command == "progress":
            season = refresh_season_stats(args.season_id, db_path=db_path)
            prog = season_progress(args.season_id, db_path=db_path)
            log.info(
                "Season %d (%s) %s: day %d, remaining=%s, progress=%s%%, wallets=%d, shards=%.2f",
                season.id, season.name, prog.status, prog.days_elapsed,
                prog.days_remaining if prog.days_remaining is not None else "-",
                prog.progress_pct if prog.progress_pct is not None else "-",
                season.total_participants, season.total_shards_issued,
            )
    except (ShardError, ValueError) as e:
        log.error("%s failed: %s", args.command, e)
        sys.exit(1)


if __name__ == "__main__":
    main()
