"""Checks applied to user input before it reaches the transport.

Record ids are bounded the way the server's action payloads bound them, so
a bad id fails locally instead of costing a round trip.
"""

import ipaddress
import json
import logging
import math
import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

# Server-side limit on ``estimateId`` in every single-estimate action
MAX_RECORD_ID_LENGTH = 200

# Material quantities an operator may report when completing a job
ACTUALS_QUANTITY_KEYS = ("openCellSets", "closedCellSets")

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def validate_record_id(value: Any, field_name: str = "estimate_id") -> str:
    """Return a cleaned record id.

    Control characters and surrounding whitespace are removed.

    Raises:
        ValueError: If the id is not a string, is empty once cleaned, or is
            longer than the server accepts.
    """
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string, got {type(value).__name__}")
    cleaned = _CONTROL_CHARS.sub("", value).strip()
    if not cleaned:
        raise ValueError(f"{field_name} cannot be empty")
    if len(cleaned) > MAX_RECORD_ID_LENGTH:
        raise ValueError(f"{field_name} too long (max {MAX_RECORD_ID_LENGTH} characters)")
    return cleaned


def parse_actuals(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse the ``--actuals`` JSON given when completing a job.

    Set counts, when present, must be finite and not negative: they are
    subtracted from warehouse stock on the server.

    Raises:
        ValueError: If the text is not a JSON object or a set count is bad.
    """
    if not raw:
        return None
    try:
        actuals = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"--actuals is not valid JSON: {e}")
    if not isinstance(actuals, dict):
        raise ValueError("--actuals must be a JSON object")

    for key in ACTUALS_QUANTITY_KEYS:
        if key not in actuals:
            continue
        quantity = actuals[key]
        if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
            raise ValueError(f"--actuals {key} must be a number")
        if not math.isfinite(quantity) or quantity < 0:
            raise ValueError(f"--actuals {key} must be a finite, non-negative number")
    return actuals


def _is_loopback(host: str) -> bool:
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def validate_backend_url(url: Optional[str]) -> Optional[str]:
    """Return the backend URL without a trailing slash, or None if unsafe.

    The session token rides in every request header, so plaintext HTTP is
    only accepted for a backend on this machine.
    """
    if not url:
        return None
    parsed = urlparse(url)
    if parsed.scheme not in ("https", "http") or not parsed.hostname:
        logger.warning("Rejected backend URL: expected http(s) with a host")
        return None
    if parsed.scheme == "http" and not _is_loopback(parsed.hostname):
        logger.warning(f"Rejected plain http backend URL for remote host {parsed.hostname}")
        return None
    return url.rstrip("/")
