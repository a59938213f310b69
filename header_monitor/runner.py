#!/usr/bin/env python3
"""CLI entry point for the Header Monitor."""

import argparse
import logging
import sys

from .config import config
from .monitor import HeaderMonitor


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Header Monitor - Threshold and frozen-value alerts for telemetry headers"
    )

    parser.add_argument(
        "--continuous",
        action="store_true",
        help="Run in continuous monitoring mode",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help=f"Poll interval in seconds (default: {config.POLL_INTERVAL})",
    )
    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help="Monitor database path (default from config)",
    )
    parser.add_argument(
        "--api-base",
        type=str,
        default=None,
        help=f"Telemetry API base URL (default: {config.TELEMETRY_API_BASE})",
    )
    parser.add_argument(
        "--headers",
        nargs="+",
        metavar="HEADER_ID",
        default=None,
        help="Only check these header ids (single cycle)",
    )
    parser.add_argument(
        "--transition",
        nargs=2,
        metavar=("OLD_STAGE_ID", "NEW_STAGE_ID"),
        default=None,
        help="Migrate monitored headers from one stage to the next and exit",
    )
    parser.add_argument(
        "--cleanup-duplicates",
        nargs="?",
        const="",
        metavar="PROJECT_ID",
        default=None,
        help="Disable duplicate monitored headers (all projects if none given) and exit",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help=f"Logging level (default: {config.LOG_LEVEL})",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=(args.log_level or config.LOG_LEVEL).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Override config if arguments provided
    if args.api_base:
        config.TELEMETRY_API_BASE = args.api_base
    if args.db_path:
        config.MONITOR_DB_PATH = args.db_path

    monitor = HeaderMonitor()

    if args.transition:
        old_stage, new_stage = args.transition
        migrated = monitor.migrate_stage(old_stage, new_stage)
        print(f"Stage transition {old_stage} -> {new_stage}: {'migrated' if migrated else 'not migrated'}")
        return 0 if migrated else 1

    if args.cleanup_duplicates is not None:
        disabled = monitor.reconcile_duplicates(args.cleanup_duplicates or None)
        print(f"Disabled {disabled} duplicate header(s)")
        return 0

    if args.continuous:
        interval = args.interval or config.POLL_INTERVAL
        monitor.run_continuous(interval_seconds=interval)
        return 0

    result = monitor.run_once(header_ids=args.headers)
    print(f"\nHeaders checked: {result.processed_headers}")
    print(f"Alerts: {len(result.alerts)}")
    for alert in result.alerts:
        suffix = " (snoozed)" if alert.snoozed else ""
        print(f"  [{alert.alert_type.value}] {alert.header_name}: {alert.value}{suffix}")
    if result.errors:
        print(f"Errors: {len(result.errors)}")
        for error in result.errors:
            print(f"  {error.get('header_id') or error.get('step', '-')}: {error['error']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
