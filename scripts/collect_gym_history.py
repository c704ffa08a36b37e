#!/usr/bin/env python3
"""
Gym history collector entry point.

Runs one snapshot (default, for cron or a systemd timer) or keeps collecting
every COLLECT_INTERVAL_SEC seconds with --interval. Only one collector may run
against a database at a time.

Usage:
    python scripts/collect_gym_history.py
    python scripts/collect_gym_history.py --init-db --json
    python scripts/collect_gym_history.py --interval 300
"""

import argparse
import json
import signal
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gymtrack.core import config, heartbeat
from gymtrack.core.collector import collect_snapshot
from gymtrack.core.db import GymStore
from gymtrack.util.logging import logger


def format_report(report) -> str:
    """Format a collection report for human-readable output."""
    counts = report.counts
    lines = [
        f"Collected at: {report.to_dict()['collected_at']}",
        f"Gyms in region: {counts.total} (mystic={counts.mystic}, valor={counts.valor}, instinct={counts.instinct})",
        f"Change rows recorded: {report.changes_recorded} ({report.first_observations} first observations)",
        f"Rows purged: {report.history_rows_purged} history, {report.change_rows_purged} changes",
        f"Duration: {report.duration_ms}ms",
    ]
    return "\n".join(lines)


def run_once(store: GymStore, as_json: bool = False) -> int:
    """Collect one snapshot; returns the process exit code."""
    try:
        report = collect_snapshot(store)
    except Exception as e:
        logger.error(f"Error collecting gym history: {e}")
        return 1

    logger.info("Gym history collected successfully")
    if as_json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(format_report(report))
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Record gym faction control history for the configured region",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create missing tables and indexes before collecting"
    )

    parser.add_argument(
        "--json", "-j",
        action="store_true",
        help="Output the collection report as JSON"
    )

    parser.add_argument(
        "--interval", "-i",
        type=int,
        nargs="?",
        const=config.get_collect_interval(),
        default=None,
        help="Keep collecting every N seconds (default COLLECT_INTERVAL_SEC)"
    )

    args = parser.parse_args()

    logger.set_debug(config.debug_enabled())

    issues = config.validate_collector_config()
    if issues:
        for issue in issues:
            logger.error(f"Configuration issue: {issue}")
        return 1

    store = GymStore.from_config()

    if args.init_db:
        try:
            store.init_db()
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            return 1

    if args.interval is None:
        return run_once(store, as_json=args.json)

    def collect_task():
        report = collect_snapshot(store)
        logger.info("Gym history collected successfully")
        if args.json:
            print(json.dumps(report.to_dict()))

    try:
        heartbeat.register_task("gym_history", args.interval, collect_task)
    except ValueError as e:
        logger.error(str(e))
        return 1

    signal.signal(signal.SIGTERM, lambda signum, frame: heartbeat.stop())
    heartbeat.start()

    task_status = heartbeat.get_status()["tasks"]["gym_history"]
    logger.info(f"Collector loop stopped ({task_status['failures']} failed cycles)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
