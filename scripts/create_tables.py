"""
create_tables.py — set up the catalog schema (pg_trgm + entities, connections, mentions).

Creates only what is missing, so it is safe to re-run after adding a model.
`--drop` rebuilds the catalog tables from scratch and deletes their rows.

Usage:
    python scripts/create_tables.py
    python scripts/create_tables.py --drop --yes   # wipe and recreate
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

sys.path.insert(0, str(Path(__file__).parent.parent))

from food_catalog.config import settings
from food_catalog.database import create_schema, engine
from food_catalog.models import Base

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("create_tables")


async def run(drop: bool) -> int:
    try:
        created = await create_schema(Base.metadata, drop_existing=drop)
    finally:
        await engine.dispose()

    if created:
        logger.info("Created tables: %s", ", ".join(created))
    else:
        logger.info("All %d catalog tables already exist", len(Base.metadata.tables))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Create the food catalog schema")
    parser.add_argument("--drop", action="store_true", help="Drop catalog tables before creating them")
    parser.add_argument("--yes", action="store_true", help="Confirm --drop without prompting")
    args = parser.parse_args(argv)

    if args.drop and not args.yes:
        answer = input(f"Drop all catalog tables in {settings.database_url.rsplit('/', 1)[-1]}? [y/N] ")
        if answer.strip().lower() != "y":
            logger.info("Aborted.")
            return 1

    return asyncio.run(run(args.drop))


if __name__ == "__main__":
    sys.exit(main())
