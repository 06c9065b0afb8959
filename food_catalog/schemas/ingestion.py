"""Pydantic schemas for mention-derived ingestion records."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from food_catalog.schemas.enums import MentionSource


class MentionRecord(BaseModel):
    """
    One extracted mention: which restaurant, which dish or category, how it
    was described, and where the evidence came from.
    """

    restaurant_name: str
    restaurant_address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    google_place_id: Optional[str] = None

    dish_name: str
    is_menu_item: bool = True
    categories: list[str] = Field(default_factory=list)
    dish_attributes: list[str] = Field(default_factory=list)
    restaurant_attributes: list[str] = Field(default_factory=list)

    source_type: MentionSource = MentionSource.COMMENT
    source_id: str
    source_url: str
    subreddit: str
    content_excerpt: str = ""
    author: Optional[str] = None
    upvotes: int = 0
    created_at: datetime


class IngestionSummary(BaseModel):
    """Counts reported at the end of one ingestion run."""

    records: int = 0
    entities_created: int = 0
    attributes_resolved: int = 0
    connections_upserted: int = 0
    mentions_created: int = 0
    connections_refreshed: int = 0
    failures: int = 0
    errors: list[str] = Field(default_factory=list)
