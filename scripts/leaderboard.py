#!/usr/bin/env python3
"""Print a season leaderboard.

Usage:
    python scripts/leaderboard.py --season 1
    python scripts/leaderboard.py --season 1 --category developer --page 2 --limit 25
    python scripts/leaderboard.py --season 1 --wallet 0xabc...
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger(__name__)


def main() -> None:
    from shardledger.ledger.leaderboard import get_leaderboard
    from shardledger.store.db_path import resolve_db_path
    from shardledger.store.models import Category

    parser = argparse.ArgumentParser(description="Shard leaderboard")
    parser.add_argument("--season", type=int, required=True)
    parser.add_argument("--category", choices=[c.value for c in Category], default=None)
    parser.add_argument("--page", type=int, default=1)
    parser.add_argument("--limit", type=int, default=20)
    parser.add_argument("--wallet", type=str, default=None, help="Also show this wallet's standing")
    parser.add_argument("--db", type=str, default=None, help="SQLite path (default: settings)")
    args = parser.parse_args()

    board = get_leaderboard(
        args.season,
        category=args.category,
        limit=args.limit,
        page=args.page,
        wallet_address=args.wallet,
        db_path=resolve_db_path(args.db),
    )

    label = board.category or "total"
    log.info(
        "Season %d leaderboard (%s) page %d/%d, %d participants",
        board.season_id, label, board.page, board.total_pages, board.total_participants,
    )
    for e in board.entries:
        log.info("  #%-5d %s %12.2f", e.rank, e.wallet_address, e.shards)

    if args.wallet:
        if board.wallet is None:
            log.info("%s has no shards this season", args.wallet)
        else:
            log.info(
                "%s: rank #%d, %.2f shards, percentile %.2f",
                args.wallet, board.wallet.rank, board.wallet.shards, board.wallet.percentile,
            )


if __name__ == "__main__":
    main()
