"""Catalog services: resolution, bulk writes, and ingestion."""

from food_catalog.services.bulk_operations import BulkOperationsService
from food_catalog.services.ingestion import IngestionPipeline
from food_catalog.services.resolution import (
    CategoryContext,
    DualPurposeEntity,
    EntityContextService,
    MenuItemContext,
)

__all__ = [
    "BulkOperationsService", "IngestionPipeline", "EntityContextService",
    "MenuItemContext", "CategoryContext", "DualPurposeEntity",
]
