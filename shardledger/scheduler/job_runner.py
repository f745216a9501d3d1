"""Concurrent execution of queued sync jobs.

Each tick: recover jobs stranded in 'running', claim the due ones, run them
on a thread pool, and record outcomes.

    success                      → done
    VerificationUnavailable      → pending again with exponential backoff,
                                   failed once job_max_retries is reached
    other ShardError             → rejected (the claim is false; never retried)
    malformed payload            → failed
    anything else (db locked...) → retried like VerificationUnavailable
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from shardledger.config import settings
from shardledger.errors import ShardError, VerificationUnavailable
from shardledger.scheduler.handlers import HANDLERS
from shardledger.store.db import claim_due_jobs, recover_running_jobs, update_job_status
from shardledger.store.models import JobStatus, SyncJob
from shardledger.store.schema import DEFAULT_DB_PATH

logger = logging.getLogger(__name__)


@dataclass
class JobResult:
    """Outcome of running a single sync job."""

    job_id: int
    job_type: str
    status: str  # done, pending (retry scheduled), rejected, failed
    attempts: int
    message: str = ""
    error: str | None = None


def backoff_seconds(attempts: int) -> float:
    """base × 2^(attempts-1), capped."""
    delay = settings.job_backoff_base_sec * (2 ** max(0, attempts - 1))
    return min(delay, settings.job_backoff_max_sec)


def _retry_or_fail(job: SyncJob, error: str, now: datetime, db_path: Path | str) -> JobResult:
    if job.attempts >= settings.job_max_retries:
        logger.error("Job %d (%s) failed after %d attempts: %s", job.id, job.job_type, job.attempts, error)
        update_job_status(job.id, JobStatus.FAILED, error_message=error, db_path=db_path)
        return JobResult(job.id, job.job_type, JobStatus.FAILED, job.attempts, error=error)

    next_at = now + timedelta(seconds=backoff_seconds(job.attempts))
    logger.warning(
        "Job %d (%s) attempt %d unavailable, retry at %s: %s",
        job.id, job.job_type, job.attempts, next_at.isoformat(timespec="seconds"), error,
    )
    update_job_status(
        job.id,
        JobStatus.PENDING,
        error_message=error,
        next_attempt_at=next_at.isoformat(),
        db_path=db_path,
    )
    return JobResult(job.id, job.job_type, JobStatus.PENDING, job.attempts, error=error)


def execute_job(
    job: SyncJob,
    db_path: Path | str = DEFAULT_DB_PATH,
    now: datetime | None = None,
) -> JobResult:
    """Run one claimed job and persist its outcome."""
    now = now or datetime.now(timezone.utc)
    handler = HANDLERS.get(job.job_type)
    if handler is None:
        error = f"unknown job type: {job.job_type}"
        update_job_status(job.id, JobStatus.FAILED, error_message=error, db_path=db_path)
        return JobResult(job.id, job.job_type, JobStatus.FAILED, job.attempts, error=error)

    try:
        message = handler(job.payload, db_path)
    except VerificationUnavailable as e:
        return _retry_or_fail(job, str(e), now, db_path)
    except ShardError as e:
        logger.info("Job %d (%s) rejected: %s", job.id, job.job_type, e)
        update_job_status(job.id, JobStatus.REJECTED, error_message=str(e), db_path=db_path)
        return JobResult(job.id, job.job_type, JobStatus.REJECTED, job.attempts, error=str(e))
    except (KeyError, TypeError, ValueError) as e:
        error = f"bad payload: {type(e).__name__}: {e}"
        logger.error("Job %d (%s) %s", job.id, job.job_type, error)
        update_job_status(job.id, JobStatus.FAILED, error_message=error, db_path=db_path)
        return JobResult(job.id, job.job_type, JobStatus.FAILED, job.attempts, error=error)
    except Exception as e:
        logger.exception("Job %d (%s) crashed", job.id, job.job_type)
        return _retry_or_fail(job, f"{type(e).__name__}: {e}", now, db_path)

    update_job_status(job.id, JobStatus.DONE, db_path=db_path)
    logger.info("Job %d (%s) done: %s", job.id, job.job_type, message, extra={"job_id": job.id})
    return JobResult(job.id, job.job_type, JobStatus.DONE, job.attempts, message=message)


def process_due_jobs(
    now: datetime | None = None,
    max_workers: int | None = None,
    limit: int | None = None,
    recover: bool = True,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[JobResult]:
    """Claim and run every due job. Returns results ordered by job id."""
    now = now or datetime.now(timezone.utc)

    # クラッシュ回復 (single runner process per DB)
    if recover:
        recovered = recover_running_jobs(db_path=db_path)
        if recovered:
            logger.info("Recovered %d running jobs", recovered)

    jobs = claim_due_jobs(now.isoformat(), limit or settings.job_batch_size, db_path=db_path)
    if not jobs:
        logger.info("No due jobs")
        return []

    workers = max_workers or settings.job_workers
    logger.info("Running %d job(s) on %d worker(s)", len(jobs), workers)

    results: list[JobResult] = []
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="shard-job") as pool:
        futures = {pool.submit(execute_job, job, db_path, now): job for job in jobs}
        for future in as_completed(futures):
            results.append(future.result())

    results.sort(key=lambda r: r.job_id)
    return results


def format_run_summary(results: list[JobResult]) -> str:
    counts: dict[str, int] = {}
    for r in results:
        counts[r.status] = counts.get(r.status, 0) + 1
    parts = [f"{status}={n}" for status, n in sorted(counts.items())]
    return f"jobs={len(results)} " + " ".join(parts) if parts else "jobs=0"
