#!/usr/bin/env python
"""Run one signal job to completion and print its final state.

Examples:
    python run_signal_job.py incremental
    python run_signal_job.py full --batch-size 100
    python run_signal_job.py company --company-id <id> --company-id <id>
"""
import argparse
import asyncio
import sys

from app.core.logging import setup_logging
from app.database.connection import close_database, init_database
from app.schemas.signal_jobs import JobStatus, JobType
from app.services.signal_processor import SignalProcessor


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("job_type", choices=[t.value for t in JobType])
    parser.add_argument("--company-id", action="append", dest="company_ids")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create missing tables first (development databases)",
    )
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging()
    await init_database(create_schema=args.create_schema)
    try:
        processor = SignalProcessor()
        job_id = await processor.enqueue_job(
            args.job_type,
            company_ids=args.company_ids,
            batch_size=args.batch_size,
        )
        await processor.wait_until_idle()
        state = await processor.get_job_status(job_id)
    finally:
        await close_database()

    print(state.model_dump_json(indent=2))
    return 0 if state.status is JobStatus.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
