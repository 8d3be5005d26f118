"""CLI command modules for foamsync.

Each module contains related command handlers used by __main__.py.
"""

from foamsync.cli.commands.credentials import (
    clear_credentials,
    get_credentials_path,
    load_credentials,
    save_credentials,
    session_from_credentials,
)
from foamsync.cli.commands.sync import (
    cmd_cache,
    cmd_estimate,
    cmd_job,
    cmd_pull,
    cmd_push,
    cmd_status,
    cmd_work_order,
)

__all__ = [
    "clear_credentials",
    "get_credentials_path",
    "load_credentials",
    "save_credentials",
    "session_from_credentials",
    "cmd_cache",
    "cmd_estimate",
    "cmd_job",
    "cmd_pull",
    "cmd_push",
    "cmd_status",
    "cmd_work_order",
]
