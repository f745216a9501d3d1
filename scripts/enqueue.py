#!/usr/bin/env python3
"""Queue a contribution for verification by the job runner.

Usage:
    python scripts/enqueue.py github --wallet 0x.. --season 1 --url https://github.com/org/repo/pull/42
    python scripts/enqueue.py deploy --wallet 0x.. --season 1 --chain base --tx 0x.. --contract 0x..
    python scripts/enqueue.py social --wallet 0x.. --season 1 --points 350 --period 2026-W42
    python scripts/enqueue.py vault --wallet 0x.. --vault 0x.. --asset ILV --chain base \\
        --balance 1000000000000000000 --shares 1000000000000000000 --block 123456 --lock-weeks 12
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
    from shardledger.scheduler.handlers import (
        enqueue_contract_deploy,
        enqueue_github_contribution,
        enqueue_social_sync,
        enqueue_vault_snapshot,
    )
    from shardledger.store.db_path import resolve_db_path

    parser = argparse.ArgumentParser(description="Enqueue shard sync jobs")
    parser.add_argument("--db", type=str, default=None, help="SQLite path (default: settings)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_gh = sub.add_parser("github", help="GitHub PR or commit")
    p_gh.add_argument("--wallet", required=True)
    p_gh.add_argument("--season", type=int, required=True)
    p_gh.add_argument("--url", required=True)
    p_gh.add_argument("--github-user", default=None)
    p_gh.add_argument("--action", default=None, help="Developer action (default: contribute_code)")

    p_dep = sub.add_parser("deploy", help="Contract deployment")
    p_dep.add_argument("--wallet", required=True)
    p_dep.add_argument("--season", type=int, required=True)
    p_dep.add_argument("--chain", required=True)
    p_dep.add_argument("--tx", required=True)
    p_dep.add_argument("--contract", required=True)

    p_soc = sub.add_parser("social", help="Social points for a period")
    p_soc.add_argument("--wallet", required=True)
    p_soc.add_argument("--season", type=int, required=True)
    p_soc.add_argument("--points", type=float, required=True)
    p_soc.add_argument("--period", required=True)

    p_vault = sub.add_parser("vault", help="Vault position snapshot")
    p_vault.add_argument("--wallet", required=True)
    p_vault.add_argument("--vault", required=True)
    p_vault.add_argument("--asset", required=True)
    p_vault.add_argument("--chain", required=True)
    p_vault.add_argument("--balance", required=True)
    p_vault.add_argument("--shares", required=True)
    p_vault.add_argument("--block", type=int, required=True)
    p_vault.add_argument("--lock-weeks", type=int, default=4)
    p_vault.add_argument("--usd", type=float, default=None, help="USD value (default: price feed)")

    args = parser.parse_args()
    db_path = resolve_db_path(args.db)

    if args.command == "github":
        queued = enqueue_github_contribution(
            args.wallet, args.season, args.url, args.github_user, args.action, db_path=db_path
        )
    elif args.command == "deploy":
        queued = enqueue_contract_deploy(
            args.wallet, args.season, args.chain, args.tx, args.contract, db_path=db_path
        )
    elif args.command == "social":
        queued = enqueue_social_sync(args.wallet, args.season, args.points, args.period, db_path=db_path)
    else:
        queued = enqueue_vault_snapshot(
            wallet_address=args.wallet,
            vault_address=args.vault,
            asset_symbol=args.asset,
            chain=args.chain,
            balance=args.balance,
            shares=args.shares,
            block_number=args.block,
            lock_weeks=args.lock_weeks,
            usd_value=args.usd,
            db_path=db_path,
        )

    if queued:
        log.info("Queued %s job", args.command)
    else:
        log.info("Duplicate %s job, already queued", args.command)


if __name__ == "__main__":
    main()
