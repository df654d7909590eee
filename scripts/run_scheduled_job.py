#!/usr/bin/env python
"""
Run Scheduled Job
Runs one tick of a periodic job, for host schedulers (cron, systemd timers).

Usage:
    python scripts/run_scheduled_job.py reminders      # every 5 minutes
    python scripts/run_scheduled_job.py missed-doses   # every 15 minutes
    python scripts/run_scheduled_job.py daily-archive  # every 15 minutes
    python scripts/run_scheduled_job.py materialize    # daily
"""

import sys
import os
import argparse
import asyncio
import json
import logging
from typing import List, Optional

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import settings
from database import init_db
from actions.reminder_scheduler import reminder_scheduler
from actions.missed_dose_detector import missed_dose_detector
from actions.daily_archiver import daily_archiver
from services.event_store import event_store


logger = logging.getLogger(__name__)

JOBS = {
    "reminders": reminder_scheduler,
    "missed-doses": missed_dose_detector,
    "daily-archive": daily_archiver,
}


async def run_job(name: str) -> dict:
    if name == "materialize":
        summary = await event_store.materialize_active_commands()
        return dict(summary, job_name="materialize", success=not summary["errors"])

    result = await JOBS[name].run_tick()
    return result.to_dict()


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL), format=settings.LOG_FORMAT)

    parser = argparse.ArgumentParser(description="Run one tick of a scheduled job")
    parser.add_argument("job", choices=sorted(list(JOBS) + ["materialize"]))
    args = parser.parse_args(argv)

    init_db()
    outcome = asyncio.run(run_job(args.job))
    print(json.dumps(outcome, indent=2, default=str))
    return 0 if outcome.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
