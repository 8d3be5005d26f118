"""Filesystem helpers for foamsync."""

import os
from pathlib import Path


def get_foamsync_home() -> Path:
    """Return the foamsync data directory.

    Honors FOAMSYNC_DATA_DIR, otherwise ~/.foamsync. The directory is
    created on first use.
    """
    override = os.environ.get("FOAMSYNC_DATA_DIR")
    home = Path(override).expanduser() if override else Path.home() / ".foamsync"
    home.mkdir(parents=True, exist_ok=True)
    return home
