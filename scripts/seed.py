#!/usr/bin/env python3
"""
Seed script: upserts submissions from a JSON file, keyed by identity.
Run after migrations: python scripts/seed.py data/submissions.json

The file holds a list of objects. Each needs an identity (or email) and a
sequence_id (or id); the stage fields are optional.
"""

import asyncio
import json
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pydantic import ValidationError

from batcheval.database import async_session_maker
from batcheval.schemas.submission import SubmissionIn
from batcheval.storage.repositories import upsert_submission


def _normalise(record: dict) -> dict:
    data = dict(record)
    data.setdefault("identity", data.get("email"))
    data.setdefault("sequence_id", data.get("id"))
    return data


async def seed(path: str):
    with open(path, "r", encoding="utf-8") as f:
        records = json.load(f)

    created = updated = rejected = 0
    async with async_session_maker() as session:
        for record in records:
            try:
                data = SubmissionIn.model_validate(_normalise(record))
            except ValidationError as e:
                rejected += 1
                print(f"Skipping invalid record: {e.error_count()} errors")
                continue
            _, was_created = await upsert_submission(session, data)
            if was_created:
                created += 1
            else:
                updated += 1
        await session.commit()

    print("Seed complete!")
    print(f"Created: {created}  Updated: {updated}  Rejected: {rejected}")


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python scripts/seed.py <submissions.json>")
        sys.exit(1)
    asyncio.run(seed(sys.argv[1]))
