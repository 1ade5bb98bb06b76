#!/usr/bin/env python3
"""
Create the reportwatch schema and optionally rebuild every entity's risk row.

Usage:
    python scripts/init_db.py                  # apply schema.sql (idempotent)
    python scripts/init_db.py --recompute-all  # also recompute all risk scores
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))
os.chdir(Path(__file__).parent.parent)

from dotenv import load_dotenv

load_dotenv()

from reportwatch.database import apply_schema, close_pool
from reportwatch.services.recomputation import get_recomputation_hooks
from reportwatch.services.repository import get_repository
from reportwatch.services.settings import LOG_FORMAT

logger = logging.getLogger("init_db")


async def recompute_all() -> int:
    hooks = get_recomputation_hooks()
    entity_ids = await get_repository().list_entity_ids()
    for entity_id in entity_ids:
        assessment = await hooks.recompute_entity(entity_id)
        print(f"  {entity_id}: {assessment.score} ({assessment.level})")
    return len(entity_ids)


async def run(args) -> None:
    try:
        await apply_schema()
        print("Schema applied.")
        if args.recompute_all:
            print("Recomputing risk scores...")
            count = await recompute_all()
            print(f"Recomputed {count} entities.")
    finally:
        await close_pool()


def main():
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument(
        "--recompute-all",
        action="store_true",
        help="Recompute the risk row of every entity after applying the schema",
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
