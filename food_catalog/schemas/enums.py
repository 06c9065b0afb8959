"""Closed vocabularies shared by the ORM models and the pydantic schemas."""

from __future__ import annotations

from enum import Enum


class EntityType(str, Enum):
    """The four kinds of catalog row. A row never changes kind."""

    RESTAURANT = "restaurant"
    DISH_OR_CATEGORY = "dish_or_category"
    DISH_ATTRIBUTE = "dish_attribute"
    RESTAURANT_ATTRIBUTE = "restaurant_attribute"


class AttributeScope(str, Enum):
    """Scope an attribute name is resolved in."""

    DISH = "dish"
    RESTAURANT = "restaurant"

    @property
    def entity_type(self) -> EntityType:
        if self is AttributeScope.DISH:
            return EntityType.DISH_ATTRIBUTE
        return EntityType.RESTAURANT_ATTRIBUTE


class ActivityLevel(str, Enum):
    TRENDING = "trending"
    ACTIVE = "active"
    NORMAL = "normal"


class MentionSource(str, Enum):
    POST = "post"
    COMMENT = "comment"
