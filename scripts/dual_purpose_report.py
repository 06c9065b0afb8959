"""
dual_purpose_report.py — periodic scan for dish_or_category entities used
both as a menu item and as a category.

Runs two count queries per dish_or_category entity; schedule it off-peak.

Usage:
    python scripts/dual_purpose_report.py
    python scripts/dual_purpose_report.py --csv reports/dual_purpose.csv
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import pandas as pd

sys.path.insert(0, str(Path(__file__).parent.parent))

from food_catalog.config import settings
from food_catalog.context import OperationContext
from food_catalog.database import engine
from food_catalog.services.resolution import EntityContextService

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def run_report(csv_path: Optional[str] = None) -> None:
    try:
        dual = await EntityContextService().find_dual_purpose_entities(
            ctx=OperationContext("dual_purpose_report")
        )
    finally:
        await engine.dispose()

    df = pd.DataFrame(
        [
            {
                "entity_id": d.entity.entity_id,
                "name": d.entity.name,
                "menu_item_usage": d.menu_item_usage,
                "category_usage": d.category_usage,
            }
            for d in dual
        ],
        columns=["entity_id", "name", "menu_item_usage", "category_usage"],
    )
    if csv_path:
        Path(csv_path).parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(csv_path, index=False)
        logger.info("Wrote %d rows to %s", len(df), csv_path)
    else:
        print(df.to_string(index=False) if len(df) else "No dual-purpose entities found.")


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Report dual-purpose dish/category entities.")
    parser.add_argument("--csv", default=None, help="Write the report to this CSV path")
    args = parser.parse_args()
    asyncio.run(run_report(csv_path=args.csv))


if __name__ == "__main__":
    main()
