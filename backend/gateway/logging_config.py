"""
BuFood API Gateway — Structured Logging Configuration
=======================================================

What:  Configures the standard-library logging tree for the whole process.
How:   One stdout handler (always), two optional file handlers
       (`error.log` at ERROR, `combined.log` at every level) enabled by
       ENABLE_FILE_LOGS, and a filter that stamps the current request id on
       every record.

Format: %(asctime)s [%(levelname)s] %(name)s [%(request_id)s] %(message)s

Structured fields (method, path, status, duration_ms, request_id, ...) are
attached through `extra=` so JSON-aware handlers can pick them up.

Logging must never break a request: `logging.raiseExceptions` is switched
off so handler failures are dropped, and the records emitted on the request
path go through `safe_log`.
"""

import logging
import sys
from pathlib import Path
from typing import Any

from gateway.config import Settings
from gateway.context import current_request_id

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(request_id)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


class RequestIdFilter(logging.Filter):
    """Adds `request_id` to every record that does not already carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = current_request_id() or "-"
        return True


def setup_logging(settings: Settings) -> None:
    """
    Configure logging for the entire application.

    When:    Called once during app startup, before any other initialization.
    """
    logging.raiseExceptions = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    request_filter = RequestIdFilter()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if settings.enable_file_logs:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        error_handler = logging.FileHandler(log_dir / "error.log", encoding="utf-8")
        error_handler.setLevel(logging.ERROR)
        handlers.append(error_handler)
        handlers.append(logging.FileHandler(log_dir / "combined.log", encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(request_filter)

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        handlers=handlers,
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def safe_log(logger: logging.Logger, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
    """Emit a record; any failure while doing so is dropped."""
    try:
        logger.log(level, msg, *args, **kwargs)
    except Exception:  # noqa: BLE001 - a log failure must not fail the request
        pass
