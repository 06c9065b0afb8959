"""Pydantic schemas package."""

from food_catalog.schemas.enums import (
    ActivityLevel,
    AttributeScope,
    EntityType,
    MentionSource,
)
from food_catalog.schemas.bulk import (
    BulkConnectionInput,
    BulkEntityInput,
    BulkEntityUpsert,
    BulkItemError,
    BulkMentionInput,
    BulkOperationConfig,
    BulkOperationMetrics,
    BulkOperationResult,
)
from food_catalog.schemas.ingestion import IngestionSummary, MentionRecord

__all__ = [
    "ActivityLevel", "AttributeScope", "EntityType", "MentionSource",
    "BulkConnectionInput", "BulkEntityInput", "BulkEntityUpsert",
    "BulkItemError", "BulkMentionInput", "BulkOperationConfig",
    "BulkOperationMetrics", "BulkOperationResult",
    "IngestionSummary", "MentionRecord",
]
