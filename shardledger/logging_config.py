"""Logging setup for the job runner and the daily rollover.

Console output is always human-readable. The rotating file log switches to
one JSON object per line when STRUCTURED_LOGGING is set, tagged with the
run_id of the process that wrote it.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import uuid
from pathlib import Path

from shardledger.config import settings

LOG_DIR = Path(__file__).resolve().parent.parent / "data" / "logs"

_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class RunIdFilter(logging.Filter):
    """Stamp every record with the run_id unless the caller already set one."""

    def __init__(self, run_id: str) -> None:
        super().__init__()
        self.run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "run_id", ""):
            record.run_id = self.run_id
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "run_id": getattr(record, "run_id", ""),
        }
        job_id = getattr(record, "job_id", None)
        if job_id is not None:
            payload["job_id"] = job_id
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _structured_from_env() -> bool:
    return os.environ.get("STRUCTURED_LOGGING", "").lower() in ("true", "1")


def setup_logging(
    structured: bool = False,
    log_dir: Path | str | None = None,
    log_name: str = "shards.log",
) -> str:
    """Configure the root logger and return the run_id for this process.

    Args:
        structured: Force JSON file output. STRUCTURED_LOGGING=true does the same.
        log_dir: Override log directory. Defaults to data/logs/.
        log_name: File name inside log_dir.
    """
    run_id = uuid.uuid4().hex[:12]
    target_dir = Path(log_dir) if log_dir else LOG_DIR
    target_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    # 既存ハンドラをクリア (重複防止)
    root.handlers.clear()

    file_handler = logging.handlers.TimedRotatingFileHandler(
        target_dir / log_name,
        when="midnight",
        backupCount=settings.log_retention_days,
        encoding="utf-8",
    )
    if structured or _structured_from_env():
        file_handler.setFormatter(JSONFormatter())
    else:
        file_handler.setFormatter(logging.Formatter(_PLAIN_FORMAT))

    run_filter = RunIdFilter(run_id)
    for handler in (logging.StreamHandler(), file_handler):
        if handler.formatter is None:
            handler.setFormatter(logging.Formatter(_PLAIN_FORMAT))
        handler.addFilter(run_filter)
        root.addHandler(handler)

    logging.getLogger(__name__).debug("Logging to %s (run %s)", target_dir / log_name, run_id)
    return run_id
