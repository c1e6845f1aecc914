#!/usr/bin/env python3
"""
Run one evaluation session to exhaustion and print the final counts.
Usage: python scripts/run_session.py [--start-offset N]
"""

import argparse
import asyncio
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from batcheval.config import settings
from batcheval.engine.errors import EvaluatorConfigError
from batcheval.service import build_orchestrator

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


async def main(start_offset: int | None) -> int:
    orchestrator = build_orchestrator()
    try:
        report = await orchestrator.start_session(start_offset=start_offset)
    except EvaluatorConfigError as e:
        print(f"Cannot start session: {e}")
        return 2

    print(f"Session {report.session_id} complete")
    print(
        f"Success: {report.inserted}  Updated: {report.updated}  "
        f"Skipped: {report.skipped}  Errors: {report.errored}"
    )
    print(f"Batches: {len(report.batches)}  Average score: {report.average_score()}")
    print(f"Next cursor: {report.next_cursor}")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run one batch evaluation session")
    parser.add_argument("--start-offset", type=int, default=None, help="first sequence id to scan")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.start_offset)))
