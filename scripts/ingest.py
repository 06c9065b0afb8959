"""
ingest.py — load extracted mention records into the catalog.

Input is a CSV or JSON-lines file with one mention per row. Required columns:
restaurant_name, dish_name, source_id, source_url, subreddit, created_at.
Optional: restaurant_address, latitude, longitude, google_place_id,
is_menu_item, categories, dish_attributes, restaurant_attributes,
source_type, content_excerpt, author, upvotes.

Usage:
    python scripts/ingest.py --input data/mentions.csv                    # full ingest
    python scripts/ingest.py --input data/mentions.jsonl --batch-size 100
    python scripts/ingest.py --input data/mentions.csv --dry-run          # parse, no DB writes
    python scripts/ingest.py --input data/mentions.csv --no-transactions  # re-runnable loads only
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

sys.path.insert(0, str(Path(__file__).parent.parent))

from food_catalog.config import settings
from food_catalog.context import OperationContext
from food_catalog.database import engine
from food_catalog.loaders import read_frame, records_from_frame
from food_catalog.schemas import MentionRecord
from food_catalog.services.ingestion import IngestionPipeline

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def run_ingest(
    input_path: str,
    dry_run: bool = False,
    batch_size: Optional[int] = None,
    transactions: bool = True,
) -> int:
    """Parse the input and run the ingestion pipeline. Returns a process exit code."""
    try:
        records = records_from_frame(read_frame(input_path))
    except ValueError as exc:
        logger.error("Cannot read %s: %s", input_path, exc)
        return 1

    if dry_run:
        logger.info("-- DRY RUN: parsing only, no DB writes --")
        ok = error = 0
        for idx, record in enumerate(records):
            try:
                MentionRecord.model_validate(record)
                ok += 1
            except ValidationError as exc:
                logger.warning("Row %d invalid: %s", idx, exc)
                error += 1
        logger.info("Dry run complete: %d ok, %d errors.", ok, error)
        return 0 if error == 0 else 1

    bulk_config: dict = {"enable_transactions": transactions}
    if batch_size:
        bulk_config["batch_size"] = batch_size

    ctx = OperationContext("ingest")
    try:
        summary = await IngestionPipeline(bulk_config=bulk_config).ingest(records, ctx=ctx)
    finally:
        await engine.dispose()

    logger.info(
        "Ingestion complete (%s). Records: %d, Entities: %d, Attributes: %d, "
        "Connections: %d, Mentions: %d, Failures: %d",
        ctx.correlation_id, summary.records, summary.entities_created,
        summary.attributes_resolved, summary.connections_upserted,
        summary.mentions_created, summary.failures,
    )
    for message in summary.errors[:20]:
        logger.warning("  %s", message)
    return 0 if summary.failures == 0 else 2


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Ingest extracted food mentions into the catalog.")
    parser.add_argument("--input", required=True, help="Path to a .csv or .jsonl mentions file")
    parser.add_argument("--dry-run", action="store_true", help="Parse only, no DB writes")
    parser.add_argument("--batch-size", type=int, default=None, help="Rows per bulk batch")
    parser.add_argument(
        "--no-transactions", action="store_true",
        help="Write batches without a transaction (idempotent re-runs only)",
    )
    args = parser.parse_args()

    sys.exit(
        asyncio.run(
            run_ingest(
                input_path=args.input,
                dry_run=args.dry_run,
                batch_size=args.batch_size,
                transactions=not args.no_transactions,
            )
        )
    )


if __name__ == "__main__":
    main()
