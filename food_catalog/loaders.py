"""
Input file loading for ingestion runs.

CSV files carry list columns as comma-separated text ("Pizza, Pasta");
JSON-lines files may carry real lists. Both end up as MentionRecord dicts.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import pandas as pd

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("restaurant_name", "dish_name", "source_id", "source_url", "subreddit", "created_at")
LIST_COLUMNS = ("categories", "dish_attributes", "restaurant_attributes")
OPTIONAL_TEXT_COLUMNS = (
    "restaurant_address", "google_place_id", "author", "content_excerpt", "source_type",
)


def _missing(val: object) -> bool:
    if isinstance(val, (list, tuple)):
        return False
    return val is None or bool(pd.isna(val))


def _parse_list(val: object) -> list[str]:
    """Split comma-separated names, strip; lists pass through cleaned."""
    if _missing(val):
        return []
    items = val if isinstance(val, (list, tuple)) else str(val).split(",")
    return [str(v).strip() for v in items if str(v).strip()]


def _parse_float(val: object) -> Optional[float]:
    if _missing(val):
        return None
    try:
        return float(val)
    except (TypeError, ValueError):
        return None


def _parse_int(val: object) -> int:
    """Parse a count; return 0 on failure."""
    try:
        return int(float(str(val).replace(",", "").strip()))
    except (TypeError, ValueError):
        return 0


def _parse_bool(val: object, default: bool = True) -> bool:
    if _missing(val):
        return default
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in ("1", "true", "yes", "y", "t")


def read_frame(path: str | Path) -> pd.DataFrame:
    """Load a .csv or .jsonl/.json-lines file into a DataFrame."""
    path = Path(path)
    if path.suffix.lower() in (".jsonl", ".ndjson", ".json"):
        df = pd.read_json(path, lines=True, dtype=False)
    else:
        df = pd.read_csv(path, low_memory=False)
    logger.info("Loaded %d rows from %s", len(df), path)
    return df


def records_from_frame(df: pd.DataFrame) -> list[dict[str, Any]]:
    """
    Map DataFrame rows to MentionRecord-shaped dicts.
    Raises ValueError when a required column is absent.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Required columns not found: {', '.join(missing)}")

    before = len(df)
    df = df.drop_duplicates(subset=["restaurant_name", "dish_name", "source_id"])
    if len(df) < before:
        logger.info("Dropped %d duplicate rows on (restaurant, dish, source).", before - len(df))

    records: list[dict[str, Any]] = []
    for _, row in df.iterrows():
        record: dict[str, Any] = {
            "restaurant_name": str(row["restaurant_name"]).strip(),
            "dish_name": str(row["dish_name"]).strip(),
            "source_id": str(row["source_id"]),
            "source_url": str(row["source_url"]),
            "subreddit": str(row["subreddit"]),
            "created_at": pd.to_datetime(row["created_at"], utc=True).to_pydatetime(),
            "latitude": _parse_float(row.get("latitude")),
            "longitude": _parse_float(row.get("longitude")),
            "upvotes": _parse_int(row.get("upvotes", 0)),
            "is_menu_item": _parse_bool(row.get("is_menu_item")),
        }
        for column in LIST_COLUMNS:
            record[column] = _parse_list(row.get(column))
        for column in OPTIONAL_TEXT_COLUMNS:
            value = row.get(column)
            if not _missing(value) and str(value).strip():
                record[column] = str(value).strip()
        records.append(record)
    return records
