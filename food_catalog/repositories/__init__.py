"""Typed accessors over the catalog store."""

from food_catalog.repositories.entities import EntityRepository
from food_catalog.repositories.connections import ConnectionRepository
from food_catalog.repositories.mentions import MentionRepository, MentionStatistics

__all__ = [
    "EntityRepository", "ConnectionRepository",
    "MentionRepository", "MentionStatistics",
]
