"""
Structured JSON logging for retention observability.

Provides structured logging with sweep IDs for correlating log lines across
the passes of one sweep, plus the RetentionRecorder that collects per-sweep
metrics and is handed to the engine rather than living in module state.
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# Context variables for sweep correlation
sweep_id_var: ContextVar[str | None] = ContextVar("sweep_id", default=None)
operation_var: ContextVar[str | None] = ContextVar("operation", default=None)
entity_type_var: ContextVar[str | None] = ContextVar("entity_type", default=None)

EXTRA_FIELDS = [
    "event",
    "duration_ms",
    "items_processed",
    "items_failed",
    "records_processed",
    "records_deleted",
    "records_archived",
    "record_id",
    "affected",
    "archived",
    "errors",
    "key",
    "size_bytes",
    "provider",
    "dry_run",
]


# -----------------------------------------------------------------------------
# JSON Formatter
# -----------------------------------------------------------------------------


class JSONFormatter(logging.Formatter):
    """
    Format log records as single-line JSON.

    Output format:
    {"timestamp": "...", "level": "INFO", "message": "...", "sweep_id": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        sweep_id = sweep_id_var.get()
        if sweep_id:
            log_data["sweep_id"] = sweep_id

        operation = operation_var.get()
        if operation:
            log_data["operation"] = operation

        entity_type = entity_type_var.get()
        if entity_type:
            log_data["entity_type"] = entity_type

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, default=str)


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    """
    Configure the root logger.

    Args:
        json_format: If True, use JSON format. If False, use human-readable format.
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

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
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


# -----------------------------------------------------------------------------
# Context Managers
# -----------------------------------------------------------------------------


@contextmanager
def log_operation(operation: str, entity_type: str | None = None):
    """
    Context manager for operation-level logging.

    Logs start and end with duration; failures are logged and re-raised.

    Usage:
        with log_operation("age_out", entity_type="experiences"):
            # ... pass logic ...
    """
    op_token = operation_var.set(operation)
    type_token = entity_type_var.set(entity_type)

    start_time = time.time()
    logger = logging.getLogger("retention")
    label = f"{operation} [{entity_type}]" if entity_type else operation

    logger.info(f"{label} started", extra={"event": "operation_start"})

    try:
        yield
        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"{label} completed",
            extra={"event": "operation_complete", "duration_ms": duration_ms},
        )
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"{label} failed: {e}",
            extra={"event": "operation_failed", "duration_ms": duration_ms},
            exc_info=True,
        )
        raise
    finally:
        operation_var.reset(op_token)
        entity_type_var.reset(type_token)


# -----------------------------------------------------------------------------
# Progress Tracker
# -----------------------------------------------------------------------------


@dataclass
class ProgressTracker:
    """
    Track progress for batch passes with periodic logging.

    Usage:
        tracker = ProgressTracker(total=len(ids), stage="grace_period:experiences")
        for record_id in ids:
            ok = purge(record_id)
            tracker.increment(ok)
        tracker.finish()
    """

    total: int
    stage: str
    log_every: int = 25

    processed: int = field(default=0, init=False)
    succeeded: int = field(default=0, init=False)
    failed: int = field(default=0, init=False)
    _start_time: float = field(default_factory=time.time, init=False)
    _logger: logging.Logger = field(init=False)

    def __post_init__(self):
        self._logger = logging.getLogger("retention.progress")

    def increment(self, success: bool = True) -> None:
        """Increment progress counter."""
        self.processed += 1
        if success:
            self.succeeded += 1
        else:
            self.failed += 1

        if self.processed % self.log_every == 0 or self.processed == self.total:
            self._logger.info(
                f"{self.stage}: {self.processed}/{self.total} "
                f"({self.succeeded} ok, {self.failed} failed)",
                extra={
                    "event": "progress_update",
                    "items_processed": self.processed,
                    "items_failed": self.failed,
                },
            )

    def finish(self) -> dict:
        """Finalize progress tracking and return summary."""
        elapsed = time.time() - self._start_time
        self._logger.debug(
            f"{self.stage}: Completed {self.processed}/{self.total} in {elapsed:.1f}s",
            extra={
                "event": "progress_complete",
                "items_processed": self.processed,
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


# -----------------------------------------------------------------------------
# Retention Recorder
# -----------------------------------------------------------------------------


class RetentionRecorder:
    """
    Collects cleanup and cascade metrics for one sweep window.

    Lifecycle is explicit: open() before work starts, record_* while work
    runs, flush() when the window ends. Long-running callers flush and
    reopen after every sweep so the buffers stay bounded. Recording while closed raises RuntimeError.
    Instances are created by the caller and passed to the engine.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger("retention.recorder")
        self._sweep_id: str | None = None
        self._opened_at: float | None = None
        self._reset()

    def _reset(self) -> None:
        self.cleanups: list[dict[str, Any]] = []
        self.cascades: list[dict[str, Any]] = []
        self.errors: list[str] = []
        self.totals: dict[str, int] = {"processed": 0, "deleted": 0, "archived": 0}

    @property
    def is_open(self) -> bool:
        return self._opened_at is not None

    @property
    def sweep_id(self) -> str | None:
        return self._sweep_id

    def open(self, sweep_id: str) -> None:
        """Start collecting; binds sweep_id into the logging context."""
        if self.is_open:
            raise RuntimeError(f"Recorder already open for sweep {self._sweep_id}")
        self._reset()
        self._sweep_id = sweep_id
        self._opened_at = time.time()
        sweep_id_var.set(sweep_id)
        self._logger.debug(f"Recorder opened: {sweep_id}", extra={"event": "recorder_open"})

    def _require_open(self) -> None:
        if not self.is_open:
            raise RuntimeError("RetentionRecorder is not open")

    def record_cleanup(self, result: Any) -> None:
        """Record one CleanupResult."""
        self._require_open()
        self.cleanups.append({
            "operation": result.operation,
            "records_processed": result.records_processed,
            "records_deleted": result.records_deleted,
            "records_archived": result.records_archived,
            "errors": len(result.errors),
            "duration_ms": result.duration_ms,
        })
        self.totals["processed"] += result.records_processed
        self.totals["deleted"] += result.records_deleted
        self.totals["archived"] += result.records_archived
        self.errors.extend(result.errors)

        self._logger.info(
            f"{result.operation}: processed={result.records_processed} "
            f"deleted={result.records_deleted} archived={result.records_archived} "
            f"errors={len(result.errors)}",
            extra={
                "event": "cleanup_recorded",
                "records_processed": result.records_processed,
                "records_deleted": result.records_deleted,
                "records_archived": result.records_archived,
                "errors": len(result.errors),
                "duration_ms": result.duration_ms,
            },
        )

    def record_cascade(self, result: Any) -> None:
        """Record one CascadeResult from a direct admin operation."""
        self._require_open()
        self.cascades.append({
            "operation": result.operation,
            "entity_type": result.entity_type.value,
            "record_id": result.record_id,
            "affected": result.total_affected,
            "archived": result.total_archived,
        })
        self._logger.info(
            f"{result.operation} {result.entity_type.value} {result.record_id}: "
            f"{result.total_affected} affected",
            extra={
                "event": "cascade_recorded",
                "record_id": result.record_id,
                "affected": result.affected_by_type(),
                "archived": result.total_archived,
            },
        )

    def flush(self) -> dict[str, Any]:
        """Log and return the summary, then close the recorder."""
        self._require_open()
        summary = {
            "sweep_id": self._sweep_id,
            "duration_ms": int((time.time() - self._opened_at) * 1000),
            "cleanups": list(self.cleanups),
            "cascades": list(self.cascades),
            "totals": dict(self.totals),
            "errors": list(self.errors),
        }
        self._logger.info(
            f"Retention summary: {summary['totals']['deleted']} deleted, "
            f"{summary['totals']['archived']} archived, {len(summary['errors'])} errors",
            extra={
                "event": "recorder_flush",
                "records_processed": summary["totals"]["processed"],
                "records_deleted": summary["totals"]["deleted"],
                "records_archived": summary["totals"]["archived"],
                "duration_ms": summary["duration_ms"],
            },
        )
        self._opened_at = None
        self._sweep_id = None
        sweep_id_var.set(None)
        self._reset()
        return summary
