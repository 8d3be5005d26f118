"""
foamsync CLI - Sync a spray-foam business document with the cloud.

Usage:
    foamsync status
    foamsync pull [--json]
    foamsync push
    foamsync job paid ESTIMATE_ID
    foamsync job complete ESTIMATE_ID [--actuals JSON]
    foamsync estimate delete ESTIMATE_ID
    foamsync work-order create ESTIMATE_ID
    foamsync cache clear
"""

import argparse
import logging
import sys

from foamsync.cli.commands import (
    cmd_cache,
    cmd_estimate,
    cmd_job,
    cmd_pull,
    cmd_push,
    cmd_status,
    cmd_work_order,
)
from foamsync.logging_config import setup_foamsync_logging

logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="foamsync",
        description="Offline-tolerant sync for spray-foam job costing data",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log to the foamsync log file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Show backend reachability and local backup")

    p_pull = subparsers.add_parser("pull", help="Pull the cloud document")
    p_pull.add_argument("--json", "-j", action="store_true", help="Print the document as JSON")

    subparsers.add_parser("push", help="Push the locally cached document")

    p_job = subparsers.add_parser("job", help="Job lifecycle actions")
    job_sub = p_job.add_subparsers(dest="job_action", required=True)
    j_paid = job_sub.add_parser("paid", help="Mark a job paid")
    j_paid.add_argument("estimate_id")
    j_complete = job_sub.add_parser("complete", help="Mark a job completed")
    j_complete.add_argument("estimate_id")
    j_complete.add_argument("--actuals", help="Execution actuals as a JSON object")

    p_estimate = subparsers.add_parser("estimate", help="Estimate actions")
    est_sub = p_estimate.add_subparsers(dest="estimate_action", required=True)
    e_delete = est_sub.add_parser("delete", help="Delete an estimate")
    e_delete.add_argument("estimate_id")

    p_wo = subparsers.add_parser("work-order", help="Work order actions")
    wo_sub = p_wo.add_subparsers(dest="work_order_action", required=True)
    wo_create = wo_sub.add_parser("create", help="Create a work order for an estimate")
    wo_create.add_argument("estimate_id")

    p_cache = subparsers.add_parser("cache", help="Local backup actions")
    cache_sub = p_cache.add_subparsers(dest="cache_action", required=True)
    cache_sub.add_parser("clear", help="Delete the local backup for this account")

    return parser


COMMANDS = {
    "status": cmd_status,
    "pull": cmd_pull,
    "push": cmd_push,
    "job": cmd_job,
    "estimate": cmd_estimate,
    "work-order": cmd_work_order,
    "cache": cmd_cache,
}


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        setup_foamsync_logging()

    try:
        return COMMANDS[args.command](args)
    except ValueError as e:
        print(f"✗ {e}")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
