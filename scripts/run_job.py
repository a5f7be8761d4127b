#!/usr/bin/env python3
"""
Run one scheduled job directly, without going through the cron endpoints.

Usage:
  python scripts/run_job.py overdue-check
  python scripts/run_job.py billing-reminders
  python scripts/run_job.py lease-expiry
  python scripts/run_job.py process-queue [--batch-size 100]
  # Requires DATABASE_URL and SECRET_KEY in .env (or export)
"""
import argparse
import asyncio
import json
import os
import sys
from dataclasses import asdict

from dotenv import load_dotenv

_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
load_dotenv(os.path.join(_root, ".env"))

# Add project root to path
sys.path.insert(0, _root)

from app.core.logging import setup_logging, get_logger  # noqa: E402
from app.database import AsyncSessionLocal, close_db  # noqa: E402
from app.services.notification_queue import NotificationQueueService  # noqa: E402
from app.services.scheduled_triggers import JOBS  # noqa: E402

logger = get_logger("scripts.run_job")


async def run(job: str, batch_size: int = None) -> dict:
    async with AsyncSessionLocal() as db:
        try:
            if job == "process-queue":
                result = await NotificationQueueService.drain(db, batch_size=batch_size)
                return asdict(result)
            result = await JOBS[job](db)
            return result.as_dict()
        except Exception:
            await db.rollback()
            raise
        finally:
            await close_db()


def main():
    parser = argparse.ArgumentParser(description="Run a scheduled billing job")
    parser.add_argument("job", choices=sorted([*JOBS, "process-queue"]))
    parser.add_argument("--batch-size", type=int, default=None)
    args = parser.parse_args()

    setup_logging()
    logger.info("Job started", extra={"job": args.job})
    summary = asyncio.run(run(args.job, args.batch_size))
    logger.info("Job finished", extra={"job": args.job, **summary})
    print(json.dumps(summary))


if __name__ == "__main__":
    main()
