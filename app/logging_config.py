"""
Structured JSON logging for lifecycle observability.

Provides structured logging with trace IDs for correlating the log lines
of one dry run or enforcement run, plus a progress tracker for deletion
loops.
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime

# Context variables for trace correlation
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)
stage_var: ContextVar[str | None] = ContextVar("stage", default=None)

# Extra record attributes copied into the JSON payload
EXTRA_FIELDS = (
    "event",
    "duration_ms",
    "items_processed",
    "items_total",
    "items_failed",
    "size_bytes",
    "policy_id",
    "org_id",
    "snapshot_id",
    "initiated_by",
)


# -----------------------------------------------------------------------------
# JSON Formatter
# -----------------------------------------------------------------------------


class JSONFormatter(logging.Formatter):
    """
    Format log records as single-line JSON.

    Output format:
    {"timestamp": "...", "level": "INFO", "message": "...", "trace_id": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add trace context if available
        trace_id = trace_id_var.get()
        if trace_id:
            log_data["trace_id"] = trace_id

        stage = stage_var.get()
        if stage:
            log_data["stage"] = stage

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, default=str)


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    """
    Configure logging for deployed or local runs.

    Args:
        json_format: If True, use JSON format. If False, use human-readable format.
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


# -----------------------------------------------------------------------------
# Context Managers
# -----------------------------------------------------------------------------


@contextmanager
def log_stage(stage: str, trace_id: str | None = None):
    """
    Context manager for stage-level logging.

    Logs stage start and end with duration, automatically tracks timing.

    Usage:
        with log_stage("lifecycle_enforcement", trace_id=lease.run_id):
            # ... stage logic ...
    """
    trace_token = trace_id_var.set(trace_id) if trace_id else None
    stage_token = stage_var.set(stage)

    start_time = time.time()
    logger = logging.getLogger("lifecycle")

    logger.info(f"Stage {stage} started", extra={"event": "stage_start"})

    try:
        yield
        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Stage {stage} completed",
            extra={"event": "stage_complete", "duration_ms": duration_ms},
        )
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"Stage {stage} failed: {e}",
            extra={"event": "stage_failed", "duration_ms": duration_ms},
            exc_info=True,
        )
        raise
    finally:
        stage_var.reset(stage_token)
        if trace_token is not None:
            trace_id_var.reset(trace_token)


# -----------------------------------------------------------------------------
# Progress Tracker
# -----------------------------------------------------------------------------


@dataclass
class ProgressTracker:
    """
    Track progress for batch operations with periodic logging.

    Usage:
        tracker = ProgressTracker(total=len(targets), stage="lifecycle_enforcement", log_every=25)
        for target in targets:
            delete(target)
            tracker.increment()
        tracker.finish()
    """

    total: int
    stage: str
    log_every: int = 10

    processed: int = field(default=0, init=False)
    succeeded: int = field(default=0, init=False)
    failed: int = field(default=0, init=False)
    _start_time: float = field(default_factory=time.time, init=False)
    _logger: logging.Logger = field(init=False)

    def __post_init__(self):
        self._logger = logging.getLogger("lifecycle.progress")

    def increment(self, success: bool = True) -> None:
        """Increment progress counter."""
        self.processed += 1
        if success:
            self.succeeded += 1
        else:
            self.failed += 1

        if self.processed % self.log_every == 0 or self.processed == self.total:
            self._log_progress()

    def _log_progress(self) -> None:
        elapsed = time.time() - self._start_time
        rate = self.processed / elapsed if elapsed > 0 else 0

        self._logger.info(
            f"{self.stage}: {self.processed}/{self.total} "
            f"({self.succeeded} ok, {self.failed} failed) [{rate:.1f}/s]",
            extra={
                "event": "progress_update",
                "items_processed": self.processed,
                "items_total": self.total,
                "items_failed": self.failed,
            },
        )

    def finish(self) -> dict:
        """Finalize progress tracking and return summary."""
        elapsed = time.time() - self._start_time

        self._logger.info(
            f"{self.stage}: Completed {self.processed}/{self.total} "
            f"({self.succeeded} ok, {self.failed} failed) in {elapsed:.1f}s",
            extra={
                "event": "progress_complete",
                "items_processed": self.processed,
                "items_total": self.total,
                "items_failed": self.failed,
                "duration_ms": int(elapsed * 1000),
            },
        )

        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "duration_seconds": round(elapsed, 1),
        }
