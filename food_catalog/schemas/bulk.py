"""Pydantic schemas for bulk write inputs, configuration, and results."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from food_catalog.config import settings
from food_catalog.schemas.enums import ActivityLevel, EntityType, MentionSource


class BulkOperationConfig(BaseModel):
    """
    Per-call bulk configuration. Defaults come from Settings; callers
    override individual fields with a dict or a full config.
    """

    batch_size: int = Field(default_factory=lambda: settings.bulk_batch_size, ge=1)
    enable_transactions: bool = Field(
        default_factory=lambda: settings.bulk_enable_transactions
    )
    enable_metrics: bool = Field(default_factory=lambda: settings.bulk_enable_metrics)
    max_retries: int = Field(default_factory=lambda: settings.bulk_max_retries, ge=0)
    retry_delay: float = Field(
        default_factory=lambda: settings.bulk_retry_delay_ms, ge=0
    )   # milliseconds


class BulkOperationMetrics(BaseModel):
    """Throughput figures for one bulk call. All values are non-negative."""

    total_items: int = 0
    success_count: int = 0
    failure_count: int = 0
    duration: float = 0.0        # milliseconds
    throughput: float = 0.0      # successful items / second
    batch_count: int = 0


class BulkItemError(BaseModel):
    """One failed item. `item_index` is the position in the caller's input."""

    batch_index: int
    item_index: int
    error_type: str
    error: str
    item: dict[str, Any] = Field(default_factory=dict)


class BulkOperationResult(BaseModel):
    """
    Aggregate outcome of a bulk call.
    `skipped_count` counts rows skipped as already existing; they are part
    of `failure_count` but have no entry in `errors`.
    """

    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    errors: list[BulkItemError] = Field(default_factory=list)
    metrics: BulkOperationMetrics = Field(default_factory=BulkOperationMetrics)


# ── Inputs ───────────────────────────────────────────────────────────────────


class BulkEntityInput(BaseModel):
    """Candidate entity row. Restaurant-only fields are ignored for other kinds."""

    name: str
    type: EntityType
    aliases: list[str] = Field(default_factory=list)
    restaurant_attributes: list[str] = Field(default_factory=list)
    restaurant_quality_score: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None
    google_place_id: Optional[str] = None
    restaurant_metadata: dict[str, Any] = Field(default_factory=dict)


class BulkConnectionInput(BaseModel):
    restaurant_id: str
    dish_or_category_id: str
    categories: list[str] = Field(default_factory=list)
    dish_attributes: list[str] = Field(default_factory=list)
    is_menu_item: bool = True
    mention_count: int = Field(0, ge=0)
    total_upvotes: int = Field(0, ge=0)
    source_diversity: int = Field(0, ge=0)
    recent_mention_count: int = Field(0, ge=0)
    last_mentioned_at: Optional[datetime] = None
    activity_level: ActivityLevel = ActivityLevel.NORMAL
    top_mentions: list[dict[str, Any]] = Field(default_factory=list)
    dish_quality_score: float = 0.0


class BulkMentionInput(BaseModel):
    connection_id: str
    source_type: MentionSource
    source_id: str
    source_url: str
    subreddit: str
    content_excerpt: str
    author: Optional[str] = None
    upvotes: int = 0
    created_at: datetime


class BulkEntityUpsert(BaseModel):
    """
    One upsert: `where` selects the existing row (equality filter on a
    unique key), `create` is inserted when none matches, `update` is
    applied otherwise.
    """

    where: dict[str, Any]
    create: BulkEntityInput
    update: dict[str, Any] = Field(default_factory=dict)
