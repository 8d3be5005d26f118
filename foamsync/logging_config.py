"""Logging setup for foamsync clients.

Adds a daily log file under ``<foamsync home>/logs`` to the ``foamsync``
logger and provides one-line helpers for sync events.
"""

import logging
from datetime import date
from typing import Optional

from foamsync.utils import get_foamsync_home

LOGGER_NAME = "foamsync"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_foamsync_logging(identity: Optional[str] = None, level: int = logging.INFO) -> logging.Logger:
    """Attach a file handler to the ``foamsync`` logger.

    Calling this twice does not add a second file handler.

    Args:
        identity: Account identity included in the startup line.
        level: Logger level.

    Returns:
        The configured ``foamsync`` logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    log_dir = get_foamsync_home() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"local-{date.today().isoformat()}.log"

    has_file_handler = any(
        isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == str(log_path)
        for h in logger.handlers
    )
    if not has_file_handler:
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    logger.info("logging started | identity=%s", identity or "-")
    return logger


def log_sync(direction: str, status: str, detail: Optional[str] = None, seq: Optional[int] = None):
    """Log one sync operation outcome.

    Args:
        direction: 'pull' or 'push'.
        status: Outcome ('success', 'error', 'stale', ...).
        detail: Optional free-form detail.
        seq: Operation sequence number.
    """
    logger = logging.getLogger(f"{LOGGER_NAME}.sync")
    level = logging.WARNING if status == "error" else logging.INFO
    parts = [f"SYNC {direction.upper()}", status]
    if seq is not None:
        parts.append(f"seq={seq}")
    if detail:
        parts.append(detail)
    logger.log(level, " | ".join(parts))
