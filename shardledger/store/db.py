"""SQLite work queue for contribution-sync and snapshot jobs.

Delivery is at-least-once: a job is claimed with a compare-and-set on its
status, and handlers must be idempotent because a crash between the ledger
write and the status update re-runs the job.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from shardledger.store.models import JobStatus, JobSummary, SyncJob
from shardledger.store.schema import DEFAULT_DB_PATH, _connect


def _begin_immediate(conn: sqlite3.Connection) -> None:
    """Take the write lock up front so read-then-write sequences can't interleave."""
    conn.execute("BEGIN IMMEDIATE")


def _row_to_job(row: sqlite3.Row) -> SyncJob:
    data = dict(row)
    data["payload"] = json.loads(data.pop("payload_json") or "{}")
    return SyncJob(**data)


def enqueue_job(
    job_type: str,
    dedupe_key: str,
    payload: dict,
    *,
    run_after: str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> bool:
    """Insert a job unless one with the same dedupe_key exists. Returns True if inserted."""
    now = datetime.now(timezone.utc).isoformat()
    conn = _connect(db_path)
    try:
        # INSERT OR IGNORE で冪等性確保 (UNIQUE on dedupe_key)
        cur = conn.execute(
            """INSERT OR IGNORE INTO sync_jobs
               (job_type, dedupe_key, payload_json, status, attempts,
                next_attempt_at, created_at, updated_at)
               VALUES (?, ?, ?, 'pending', 0, ?, ?, ?)""",
            (job_type, dedupe_key, json.dumps(payload, sort_keys=True), run_after or now, now, now),
        )
        conn.commit()
        return cur.rowcount > 0
    finally:
        conn.close()


def get_job(job_id: int, db_path: Path | str = DEFAULT_DB_PATH) -> SyncJob | None:
    conn = _connect(db_path)
    try:
        row = conn.execute("SELECT * FROM sync_jobs WHERE id = ?", (job_id,)).fetchone()
        return _row_to_job(row) if row else None
    finally:
        conn.close()


def get_job_by_key(dedupe_key: str, db_path: Path | str = DEFAULT_DB_PATH) -> SyncJob | None:
    conn = _connect(db_path)
    try:
        row = conn.execute(
            "SELECT * FROM sync_jobs WHERE dedupe_key = ?", (dedupe_key,)
        ).fetchone()
        return _row_to_job(row) if row else None
    finally:
        conn.close()


def claim_due_jobs(
    now_utc: str,
    limit: int = 50,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[SyncJob]:
    """Move up to `limit` due pending jobs to running and return them.

    A job claimed by another runner in the meantime is skipped.
    """
    now = datetime.now(timezone.utc).isoformat()
    conn = _connect(db_path)
    try:
        _begin_immediate(conn)
        rows = conn.execute(
            """SELECT * FROM sync_jobs
               WHERE status = 'pending' AND next_attempt_at <= ?
               ORDER BY next_attempt_at ASC, id ASC
               LIMIT ?""",
            (now_utc, limit),
        ).fetchall()
        claimed: list[SyncJob] = []
        for r in rows:
            cur = conn.execute(
                """UPDATE sync_jobs
                   SET status = 'running', attempts = attempts + 1, updated_at = ?
                   WHERE id = ? AND status = 'pending'""",
                (now, r["id"]),
            )
            if cur.rowcount == 1:
                job = _row_to_job(r)
                job.status = JobStatus.RUNNING
                job.attempts += 1
                claimed.append(job)
        conn.commit()
        return claimed
    finally:
        conn.close()


def update_job_status(
    job_id: int,
    status: str,
    *,
    error_message: str | None = None,
    next_attempt_at: str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> None:
    """Record a job outcome. next_attempt_at is only changed when given."""
    now = datetime.now(timezone.utc).isoformat()
    conn = _connect(db_path)
    try:
        conn.execute(
            """UPDATE sync_jobs
               SET status = ?, last_error = ?,
                   next_attempt_at = COALESCE(?, next_attempt_at),
                   updated_at = ?
               WHERE id = ?""",
            (status, error_message, next_attempt_at, now, job_id),
        )
        conn.commit()
    finally:
        conn.close()


def recover_running_jobs(db_path: Path | str = DEFAULT_DB_PATH) -> int:
    """Return jobs stranded in 'running' (runner crashed mid-job) to pending."""
    now = datetime.now(timezone.utc).isoformat()
    conn = _connect(db_path)
    try:
        cur = conn.execute(
            """UPDATE sync_jobs
               SET status = 'pending', next_attempt_at = ?, updated_at = ?
               WHERE status = 'running'""",
            (now, now),
        )
        conn.commit()
        return cur.rowcount
    finally:
        conn.close()


def list_jobs(
    status: str | None = None,
    job_type: str | None = None,
    db_path: Path | str = DEFAULT_DB_PATH,
) -> list[SyncJob]:
    clauses: list[str] = []
    params: list[object] = []
    if status:
        clauses.append("status = ?")
        params.append(status)
    if job_type:
        clauses.append("job_type = ?")
        params.append(job_type)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    conn = _connect(db_path)
    try:
        rows = conn.execute(
            f"SELECT * FROM sync_jobs {where} ORDER BY id ASC", params
        ).fetchall()
        return [_row_to_job(r) for r in rows]
    finally:
        conn.close()


def get_job_summary(db_path: Path | str = DEFAULT_DB_PATH) -> JobSummary:
    """Status counts across the whole queue."""
    conn = _connect(db_path)
    try:
        rows = conn.execute(
            "SELECT status, COUNT(*) AS cnt FROM sync_jobs GROUP BY status"
        ).fetchall()
        summary = JobSummary()
        for r in rows:
            if hasattr(summary, r["status"]):
                setattr(summary, r["status"], r["cnt"])
        return summary
    finally:
        conn.close()
