"""Logging helpers for the FoamSync backend."""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(level: str = "INFO") -> None:
    """Attach a stderr handler to the ``foamsync`` logger tree once."""
    global _configured
    root = logging.getLogger("foamsync")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if _configured:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


_sync_logger = logging.getLogger("foamsync.sync")


def log_sync_operation(
    prefix: str,
    operation: str,
    table: str,
    record_id: str | None,
    success: bool,
    error: str | None = None,
) -> None:
    """Log one per-record reconciliation outcome."""
    if success:
        _sync_logger.info(f"{operation.upper()} | {prefix} | {table}/{record_id} | ok")
    else:
        _sync_logger.warning(
            f"{operation.upper()} | {prefix} | {table}/{record_id} | failed: {error}"
        )
