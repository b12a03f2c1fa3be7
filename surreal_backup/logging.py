from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any

from surreal_backup.config import get_log_path, load_config

# Identifier of the backup or restore run the current code belongs to
_run_id: ContextVar[str] = ContextVar("run_id", default="")


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


def get_run_id() -> str:
    """Get the current run ID, or an empty string outside of a run."""
    return _run_id.get()


@contextmanager
def run_context(run_id: str | None = None) -> Generator[str, None, None]:
    """Context manager scoping a run ID to a block of code."""
    old_id = _run_id.get()
    new_id = run_id or new_run_id()
    _run_id.set(new_id)
    try:
        yield new_id
    finally:
        _run_id.set(old_id)


class RunIdFilter(logging.Filter):
    """Logging filter that adds run_id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = get_run_id() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter, one object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname,
            "component": getattr(record, "component", None) or record.name,
            "message": record.getMessage(),
            "run_id": getattr(record, "run_id", "-"),
        }
        fields = getattr(record, "event_fields", None)
        if fields:
            for key, value in fields.items():
                log_entry.setdefault(key, value)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


def configure_logging(config: dict[str, Any] | None = None) -> None:
    cfg = config or load_config()
    level_name = str(cfg.get("logging", {}).get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    use_json = cfg.get("logging", {}).get("json_format", True)

    log_path = get_log_path(cfg)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)

    if root.handlers:
        # Avoid duplicate handlers when configured repeatedly in tests.
        return

    run_filter = RunIdFilter()

    if use_json:
        fmt: logging.Formatter = StructuredFormatter()
    else:
        fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(run_id)s | %(name)s | %(message)s")

    stream = logging.StreamHandler()
    stream.setFormatter(fmt)
    stream.addFilter(run_filter)
    root.addHandler(stream)

    file_handler = RotatingFileHandler(
        log_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(fmt)
    file_handler.addFilter(run_filter)
    root.addHandler(file_handler)


def log_event(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    component: str | None = None,
    **fields: Any,
) -> None:
    """Log a message with a component name and structured event fields."""
    if not logger.isEnabledFor(level):
        return
    record = logger.makeRecord(
        logger.name,
        level,
        "(unknown)",
        0,
        message,
        (),
        None,
    )
    record.component = component or logger.name
    record.event_fields = fields
    logger.handle(record)


def log_backup_event(
    logger: logging.Logger,
    level: int,
    message: str,
    *,
    component: str,
    backup_type: str,
    status: str,
    duration_ms: int | None = None,
    file_size_bytes: int | None = None,
    compressed_size_bytes: int | None = None,
    **fields: Any,
) -> None:
    """Backup events always carry the full field set, null where unknown."""
    log_event(
        logger,
        level,
        message,
        component=component,
        backup_type=backup_type,
        status=status,
        duration_ms=duration_ms,
        file_size_bytes=file_size_bytes,
        compressed_size_bytes=compressed_size_bytes,
        **fields,
    )
