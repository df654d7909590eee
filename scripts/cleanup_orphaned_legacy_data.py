#!/usr/bin/env python
"""
Cleanup Orphaned Legacy Data
Finds legacy mirror rows (calendar events, schedules, reminders) whose
medication command or source event no longer exists.

Usage:
    python scripts/cleanup_orphaned_legacy_data.py              # dry run
    python scripts/cleanup_orphaned_legacy_data.py --backup-only
    python scripts/cleanup_orphaned_legacy_data.py --execute
"""

import sys
import os
import argparse
import logging
from typing import List, Optional

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.exc import SQLAlchemyError

from config import settings
from database import get_db_context, init_db
from services.orphan_cleanup import CleanupMode, OrphanCleanupTool


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Find and remove legacy mirror rows with no unified source"
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--execute",
        action="store_true",
        help="Back up and delete orphaned rows"
    )
    mode.add_argument(
        "--backup-only",
        action="store_true",
        help="Write a backup of orphaned rows without deleting"
    )
    parser.add_argument(
        "--backup-dir",
        default=settings.ORPHAN_BACKUP_DIR,
        help="Directory for backup and report files"
    )
    return parser


def print_report(report) -> None:
    print("\n" + "=" * 60)
    print(f"Orphan Cleanup Report ({report.mode.value})")
    print("=" * 60)
    print(f"Valid commands: {report.valid_command_count}")
    for collection, counts in report.collections.items():
        line = f"  {collection}: {counts['orphaned']} orphaned of {counts['total']}"
        if collection in report.deletion_results:
            line += f", deleted {report.deletion_results[collection]['deleted']}"
        print(line)
    print(f"\nTotal orphaned: {report.total_orphaned}")
    if report.mode == CleanupMode.EXECUTE:
        print(f"Total deleted: {report.total_deleted}")
    if report.backup_path:
        print(f"Backup: {report.backup_path}")
    if report.report_path:
        print(f"Report: {report.report_path}")
    if report.mode == CleanupMode.DRY_RUN and report.total_orphaned:
        print("\nDry run only. Re-run with --backup-only or --execute.")
    for error in report.errors:
        print(f"ERROR: {error}")


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL), format=settings.LOG_FORMAT)
    args = build_parser().parse_args(argv)

    if args.execute:
        mode = CleanupMode.EXECUTE
    elif args.backup_only:
        mode = CleanupMode.BACKUP_ONLY
    else:
        mode = CleanupMode.DRY_RUN

    try:
        init_db()
        with get_db_context() as db:
            report = OrphanCleanupTool().run(db, mode=mode, backup_dir=args.backup_dir)
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Orphan cleanup failed: {e}")
        return 1

    print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
