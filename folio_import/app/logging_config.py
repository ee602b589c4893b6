"""
Logging configuration for the FolioImport backend.

Uses structlog for structured logging with:
- Console output (development)
- File output with weekly rotation (production)
- JSON formatting for every line

Import runs bind a ``run_id`` (and the account being imported) into
structlog contextvars, so every event emitted by the pipeline stages of one
analysis/execution call can be correlated without threading the id through
each function signature.

Log rotation: Weekly with 52 weeks (1 year) retention, gzip compression.
"""
import gzip
import logging
import logging.handlers
import shutil
import sys
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import structlog
from structlog.types import EventDict


def get_log_directory() -> Path:
    """Get or create the log directory."""
    log_dir = Path(__file__).parent.parent.parent / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def add_log_level(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add log level to the event dict.
    """
    if method_name == "warn":
        method_name = "warning"
    event_dict["level"] = method_name.upper()
    return event_dict


def _get_rotated_filename(default_name: str) -> str:
    """
    Custom namer for rotated log files.

    Example: folio_import.log.2025-11-28 -> folio_import.log.2025-11-28.gz
    """
    return default_name + ".gz"


def _compress_rotated_file(source: str, dest: str) -> None:
    """
    Compress rotated log files with gzip and drop the uncompressed original.
    """
    with open(source, 'rb') as f_in:
        with gzip.open(dest, 'wb') as f_out:
            shutil.copyfileobj(f_in, f_out)

    Path(source).unlink()


def configure_logging(log_level: str = "INFO", enable_file_logging: bool = True) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_file_logging: Whether to enable file logging (default: True)
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    handlers.append(console_handler)

    if enable_file_logging:
        log_file = get_log_directory() / "folio_import.log"

        # W0 = rotate every Monday at midnight (UTC), keep one year
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=str(log_file),
            when="W0",
            interval=1,
            backupCount=52,
            encoding="utf-8",
            utc=True
            )
        file_handler.setLevel(numeric_level)
        file_handler.rotator = _compress_rotated_file
        file_handler.namer = _get_rotated_filename

        handlers.append(file_handler)

    logging.basicConfig(
        format="%(message)s",
        handlers=handlers,
        level=numeric_level,
        force=True
        )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
        )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger instance (structured logger).

    Args:
        name: Logger name (typically __name__)

    Returns:
        structlog.stdlib.BoundLogger: Configured logger

    Usage:
        logger = get_logger(__name__)
        logger.info("message", key="value")
    """
    return structlog.get_logger(name)


@contextmanager
def bound_import_run(operation: str, **context: Any) -> Iterator[str]:
    """
    Bind a fresh run id (plus extra context) to every log event emitted
    inside the block.

    Args:
        operation: "analyze" or "execute"
        **context: Extra key/values (e.g. portfolio_account_id)

    Yields:
        The generated run id
    """
    run_id = uuid.uuid4().hex[:12]
    with structlog.contextvars.bound_contextvars(run_id=run_id, operation=operation, **context):
        yield run_id
