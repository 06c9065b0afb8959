"""
Connection accessor — restaurant ↔ dish_or_category relationship records.

Cumulative metrics (mention_count, total_upvotes, source_diversity,
last_mentioned_at) only move forward; lowering one requires an explicit
correction (`allow_decrease=True`). Snapshot metrics (recent_mention_count,
activity_level, top_mentions, dish_quality_score) are replaced.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from food_catalog.context import OperationContext
from food_catalog.exceptions import (
    CatalogValidationError,
    EntityNotFoundError,
    UniqueConstraintError,
)
from food_catalog.models import Connection
from food_catalog.models.entity import new_id
from food_catalog.repositories.base import find_by_id, merge_unique, tracked
from food_catalog.repositories.entities import EntityRepository
from food_catalog.schemas.enums import ActivityLevel, EntityType
from food_catalog.store import CatalogStore

logger = logging.getLogger(__name__)

CUMULATIVE_METRICS = ("mention_count", "total_upvotes", "source_diversity")
SNAPSHOT_METRICS = (
    "recent_mention_count",
    "activity_level",
    "top_mentions",
    "dish_quality_score",
)
LIST_FIELDS = ("categories", "dish_attributes")
CONNECTION_FIELDS = frozenset(
    ("is_menu_item", "last_mentioned_at") + CUMULATIVE_METRICS + SNAPSHOT_METRICS + LIST_FIELDS
)


def _activity_value(value: Any) -> str:
    return ActivityLevel(value).value


def build_connection_row(
    restaurant_id: str, dish_or_category_id: str, fields: dict[str, Any]
) -> dict[str, Any]:
    """Insert row with the defaults of a freshly observed pairing."""
    return {
        "connection_id": new_id(),
        "restaurant_id": restaurant_id,
        "dish_or_category_id": dish_or_category_id,
        "categories": merge_unique([], fields.get("categories")),
        "dish_attributes": merge_unique([], fields.get("dish_attributes")),
        "is_menu_item": fields.get("is_menu_item", True),
        "mention_count": fields.get("mention_count") or 0,
        "total_upvotes": fields.get("total_upvotes") or 0,
        "source_diversity": fields.get("source_diversity") or 0,
        "recent_mention_count": fields.get("recent_mention_count") or 0,
        "last_mentioned_at": fields.get("last_mentioned_at"),
        "activity_level": _activity_value(fields.get("activity_level") or ActivityLevel.NORMAL),
        "top_mentions": list(fields.get("top_mentions") or []),
        "dish_quality_score": fields.get("dish_quality_score") or 0,
    }


def merge_metrics(
    existing: Connection, fields: dict[str, Any], *, allow_decrease: bool = False
) -> dict[str, Any]:
    """
    Update payload that applies `fields` on top of `existing`: cumulative
    counters take the larger value, list fields are unioned.
    """
    data: dict[str, Any] = {}
    for name in CUMULATIVE_METRICS:
        if fields.get(name) is None:
            continue
        current = getattr(existing, name) or 0
        data[name] = fields[name] if allow_decrease else max(current, fields[name])

    incoming_last = fields.get("last_mentioned_at")
    if incoming_last is not None:
        current_last = existing.last_mentioned_at
        if allow_decrease or current_last is None or incoming_last > current_last:
            data["last_mentioned_at"] = incoming_last

    for name in SNAPSHOT_METRICS:
        if fields.get(name) is not None:
            data[name] = fields[name]
    if "activity_level" in data:
        data["activity_level"] = _activity_value(data["activity_level"])

    for name in LIST_FIELDS:
        if fields.get(name):
            data[name] = merge_unique(getattr(existing, name), fields[name])

    # once seen on a menu, a pairing stays a menu item unless corrected
    if fields.get("is_menu_item") is not None:
        flag = bool(fields["is_menu_item"])
        data["is_menu_item"] = flag if allow_decrease else bool(existing.is_menu_item) or flag
    return data


class ConnectionRepository:
    """Reads and writes for connections plus the usage counters resolution relies on."""

    entity_name = "Connection"

    def __init__(
        self,
        store: Optional[CatalogStore] = None,
        entities: Optional[EntityRepository] = None,
    ) -> None:
        self._store = store or CatalogStore()
        self._entities = entities or EntityRepository(self._store)

    @property
    def delegate(self):
        return self._store.connections

    def _check_fields(self, fields: dict[str, Any]) -> None:
        unknown = sorted(set(fields) - CONNECTION_FIELDS)
        negative = sorted(
            name for name in CUMULATIVE_METRICS + ("recent_mention_count",)
            if (fields.get(name) or 0) < 0
        )
        errors = [f"unknown field '{f}'" for f in unknown]
        errors += [f"{name} must not be negative" for name in negative]
        if errors:
            raise CatalogValidationError(self.entity_name, errors)

    async def find_by_id(
        self, connection_id: str, ctx: Optional[OperationContext] = None
    ) -> Optional[Connection]:
        ctx = OperationContext.ensure(ctx, "find_by_id")
        async with tracked(logger, ctx, self.entity_name, "find_by_id", connection_id=connection_id):
            return await find_by_id(self.delegate, connection_id)

    async def find_many(
        self,
        where: Optional[dict[str, Any]] = None,
        *,
        order_by: Optional[list[str]] = None,
        skip: Optional[int] = None,
        take: Optional[int] = None,
        ctx: Optional[OperationContext] = None,
    ) -> list[Connection]:
        ctx = OperationContext.ensure(ctx, "find_many")
        async with tracked(logger, ctx, self.entity_name, "find_many", where=where):
            return await self.delegate.find_many(
                where, order_by=order_by, skip=skip, take=take
            )

    async def count_by_category_membership(
        self, category_entity_id: str, ctx: Optional[OperationContext] = None
    ) -> int:
        """Connections whose `categories` list contains the entity."""
        ctx = OperationContext.ensure(ctx, "count_by_category_membership")
        async with tracked(
            logger, ctx, self.entity_name, "count_by_category_membership",
            category_entity_id=category_entity_id,
        ):
            return await self.delegate.count({"categories__has": category_entity_id})

    async def count_by_menu_item_usage(
        self,
        restaurant_id: Optional[str] = None,
        dish_entity_id: Optional[str] = None,
        ctx: Optional[OperationContext] = None,
    ) -> int:
        """Connections with is_menu_item set, optionally narrowed to a restaurant and/or dish."""
        ctx = OperationContext.ensure(ctx, "count_by_menu_item_usage")
        where: dict[str, Any] = {"is_menu_item": True}
        if restaurant_id is not None:
            where["restaurant_id"] = restaurant_id
        if dish_entity_id is not None:
            where["dish_or_category_id"] = dish_entity_id
        async with tracked(logger, ctx, self.entity_name, "count_by_menu_item_usage", **where):
            return await self.delegate.count(where)

    async def upsert_by_pair(
        self,
        restaurant_id: str,
        dish_or_category_id: str,
        fields: Optional[dict[str, Any]] = None,
        ctx: Optional[OperationContext] = None,
    ) -> Connection:
        """
        Create the connection for a (restaurant, dish_or_category) pair, or
        merge `fields` into the existing one. A create that loses a race to a
        concurrent writer is retried once as a merge.
        """
        ctx = OperationContext.ensure(ctx, "upsert_by_pair")
        fields = fields or {}
        self._check_fields(fields)
        pair = {"restaurant_id": restaurant_id, "dish_or_category_id": dish_or_category_id}

        async with tracked(logger, ctx, self.entity_name, "upsert_by_pair", **pair):
            existing = await self.delegate.find_unique(pair)
            if existing is None:
                try:
                    return await self.delegate.create(
                        build_connection_row(restaurant_id, dish_or_category_id, fields)
                    )
                except UniqueConstraintError:
                    logger.warning(
                        "[%s] Connection %s/%s created concurrently; merging instead",
                        ctx, restaurant_id, dish_or_category_id,
                    )
                    existing = await self.delegate.find_unique(pair)
                    if existing is None:
                        raise

            data = merge_metrics(existing, fields)
            if not data:
                return existing
            return await self.delegate.update({"connection_id": existing.connection_id}, data)

    async def create_with_validation(
        self,
        restaurant_id: str,
        dish_or_category_id: str,
        *,
        categories: Optional[list[str]] = None,
        dish_attributes: Optional[list[str]] = None,
        is_menu_item: bool = True,
        ctx: Optional[OperationContext] = None,
    ) -> Connection:
        """Create a connection after checking every referenced entity exists with the right kind."""
        ctx = OperationContext.ensure(ctx, "create_with_validation")
        expectations = [(restaurant_id, EntityType.RESTAURANT, "restaurant_id")]
        expectations.append((dish_or_category_id, EntityType.DISH_OR_CATEGORY, "dish_or_category_id"))
        expectations += [(c, EntityType.DISH_OR_CATEGORY, "categories") for c in categories or []]
        expectations += [(a, EntityType.DISH_ATTRIBUTE, "dish_attributes") for a in dish_attributes or []]

        async with tracked(
            logger, ctx, self.entity_name, "create_with_validation",
            restaurant_id=restaurant_id, dish_or_category_id=dish_or_category_id,
        ):
            errors: list[str] = []
            for entity_id, kind, field in expectations:
                entity = await self._entities.find_by_id(entity_id, ctx=ctx)
                if entity is None:
                    errors.append(f"{field}: entity {entity_id} does not exist")
                elif entity.type != kind.value:
                    errors.append(
                        f"{field}: entity {entity_id} is type '{entity.type}', "
                        f"expected '{kind.value}'"
                    )
            if errors:
                raise CatalogValidationError(self.entity_name, errors)

            return await self.delegate.create(
                build_connection_row(
                    restaurant_id,
                    dish_or_category_id,
                    {
                        "categories": categories,
                        "dish_attributes": dish_attributes,
                        "is_menu_item": is_menu_item,
                    },
                )
            )

    async def update_quality_metrics(
        self,
        connection_id: str,
        metrics: dict[str, Any],
        *,
        allow_decrease: bool = False,
        ctx: Optional[OperationContext] = None,
    ) -> Connection:
        """Refresh metrics. Cumulative counters never go down unless `allow_decrease`."""
        ctx = OperationContext.ensure(ctx, "update_quality_metrics")
        self._check_fields(metrics)
        async with tracked(
            logger, ctx, self.entity_name, "update_quality_metrics", connection_id=connection_id
        ):
            existing = await find_by_id(self.delegate, connection_id)
            if existing is None:
                raise EntityNotFoundError(self.entity_name, connection_id)
            data = merge_metrics(existing, metrics, allow_decrease=allow_decrease)
            if not data:
                return existing
            return await self.delegate.update({"connection_id": connection_id}, data)
