#!/usr/bin/env python3
"""Job runner tick: claim due sync jobs and execute them concurrently.

Usage:
    # One tick with default workers (cron every minute)
    python scripts/run_jobs.py

    # Custom DB and worker count, JSON file logs
    python scripts/run_jobs.py --db data/staging.db --workers 8 --structured
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

log = logging.getLogger(__name__)


def main() -> None:
    from shardledger.logging_config import setup_logging
    from shardledger.scheduler.job_runner import format_run_summary, process_due_jobs
    from shardledger.store.db import get_job_summary
    from shardledger.store.db_path import resolve_db_path

    parser = argparse.ArgumentParser(description="Run due shard sync jobs")
    parser.add_argument("--db", type=str, default=None, help="SQLite path (default: settings)")
    parser.add_argument("--workers", type=int, default=None, help="Thread pool size")
    parser.add_argument("--limit", type=int, default=None, help="Max jobs claimed this tick")
    parser.add_argument("--structured", action="store_true", help="JSON file logs")
    args = parser.parse_args()

    run_id = setup_logging(structured=args.structured)
    db_path = resolve_db_path(args.db)
    log.info("=== Job tick (run_id=%s) ===", run_id)
    log.info("DB path: %s", db_path)

    results = process_due_jobs(max_workers=args.workers, limit=args.limit, db_path=db_path)
    log.info("Tick results: %s", format_run_summary(results))

    for r in results:
        if r.error:
            log.info("  job %d %s → %s: %s", r.job_id, r.job_type, r.status, r.error)

    summary = get_job_summary(db_path=db_path)
    log.info(
        "Queue: pending=%d running=%d done=%d rejected=%d failed=%d",
        summary.pending, summary.running, summary.done, summary.rejected, summary.failed,
    )


if __name__ == "__main__":
    main()
