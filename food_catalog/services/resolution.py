"""
Contextual resolution — what a dish_or_category entity *means* in a given
context, and scoped attribute lookup.

  Menu context      : (dish, restaurant) → the is_menu_item connection, or None
  Category context  : entity → how many connections list it in `categories`
  Dual purpose      : dish_or_category entities used both ways (periodic scan)
  Scoped attributes : "Italian" in dish scope and "Italian" in restaurant scope
                      are different entities; scope is part of the lookup key
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from food_catalog.context import OperationContext
from food_catalog.exceptions import CatalogValidationError, UniqueConstraintError
from food_catalog.models import Connection, Entity
from food_catalog.repositories.base import tracked
from food_catalog.repositories.connections import ConnectionRepository
from food_catalog.repositories.entities import EntityRepository
from food_catalog.schemas.enums import AttributeScope, EntityType
from food_catalog.store import CatalogStore

logger = logging.getLogger(__name__)


@dataclass
class MenuItemContext:
    entity: Entity
    connection: Connection
    is_menu_item: bool = True


@dataclass
class CategoryContext:
    entity: Entity
    connection_count: int
    usage_type: str = "category"


@dataclass
class DualPurposeEntity:
    entity: Entity
    menu_item_usage: int
    category_usage: int


def coerce_scope(scope: Union[AttributeScope, str]) -> AttributeScope:
    try:
        return AttributeScope(scope)
    except ValueError:
        raise CatalogValidationError(
            "Attribute", [f"unknown attribute scope '{scope}' (expected 'dish' or 'restaurant')"]
        ) from None


class EntityContextService:
    """Resolution API over the entity and connection accessors."""

    def __init__(
        self,
        store: Optional[CatalogStore] = None,
        entities: Optional[EntityRepository] = None,
        connections: Optional[ConnectionRepository] = None,
    ) -> None:
        store = store or CatalogStore()
        self.entities = entities or EntityRepository(store)
        self.connections = connections or ConnectionRepository(store, self.entities)

    # ── Dish / category context ──────────────────────────────────────────────

    async def get_entity_in_menu_context(
        self,
        dish_entity_id: str,
        restaurant_id: str,
        ctx: Optional[OperationContext] = None,
    ) -> Optional[MenuItemContext]:
        """
        The dish as served by this restaurant. Returns None when the entity
        does not exist or the restaurant has no menu connection for it; an
        entity of another kind is a validation error.
        """
        ctx = OperationContext.ensure(ctx, "get_entity_in_menu_context")
        async with tracked(
            logger, ctx, "EntityContext", "menu_context",
            dish_entity_id=dish_entity_id, restaurant_id=restaurant_id,
        ):
            entity = await self.entities.find_by_id(dish_entity_id, ctx=ctx)
            if entity is None:
                return None
            if entity.type != EntityType.DISH_OR_CATEGORY.value:
                raise CatalogValidationError(
                    "Entity",
                    [f"entity {dish_entity_id} is type '{entity.type}', "
                     f"expected '{EntityType.DISH_OR_CATEGORY.value}'"],
                )

            connection = await self.connections.delegate.find_unique({
                "restaurant_id": restaurant_id,
                "dish_or_category_id": dish_entity_id,
                "is_menu_item": True,
            })
            if connection is None:
                return None
            return MenuItemContext(entity=entity, connection=connection)

    async def get_entity_in_category_context(
        self, entity_id: str, ctx: Optional[OperationContext] = None
    ) -> Optional[CategoryContext]:
        """The entity used as a category. None if absent or not a dish_or_category."""
        ctx = OperationContext.ensure(ctx, "get_entity_in_category_context")
        async with tracked(logger, ctx, "EntityContext", "category_context", entity_id=entity_id):
            entity = await self.entities.find_by_id(entity_id, ctx=ctx)
            if entity is None or entity.type != EntityType.DISH_OR_CATEGORY.value:
                return None
            count = await self.connections.count_by_category_membership(entity_id, ctx=ctx)
            return CategoryContext(entity=entity, connection_count=count)

    async def find_dual_purpose_entities(
        self, ctx: Optional[OperationContext] = None
    ) -> list[DualPurposeEntity]:
        """
        Every dish_or_category used both as a menu item and as a category.
        Two count queries per entity: run it as a batch job, not per request.
        """
        ctx = OperationContext.ensure(ctx, "find_dual_purpose_entities")
        async with tracked(logger, ctx, "EntityContext", "find_dual_purpose_entities"):
            candidates = await self.entities.find_by_type(
                EntityType.DISH_OR_CATEGORY, order_by=["name"], ctx=ctx
            )
            dual: list[DualPurposeEntity] = []
            for entity in candidates:
                # One query at a time: a transaction-bound store shares a single session
                menu_usage = await self.connections.count_by_menu_item_usage(
                    dish_entity_id=entity.entity_id, ctx=ctx
                )
                category_usage = await self.connections.count_by_category_membership(
                    entity.entity_id, ctx=ctx
                )
                if menu_usage > 0 and category_usage > 0:
                    dual.append(DualPurposeEntity(entity, menu_usage, category_usage))

            logger.info(
                "[%s] %d of %d dish_or_category entities are dual purpose",
                ctx, len(dual), len(candidates),
            )
            return dual

    # ── Scoped attributes ────────────────────────────────────────────────────

    async def resolve_attributes_by_scope(
        self,
        name: str,
        scope: Union[AttributeScope, str],
        ctx: Optional[OperationContext] = None,
    ) -> list[Entity]:
        """Case-insensitive exact-name match among attributes of `scope`'s kind."""
        ctx = OperationContext.ensure(ctx, "resolve_attributes_by_scope")
        scope = coerce_scope(scope)
        if not name or not name.strip():
            raise CatalogValidationError("Attribute", ["attribute name is required"])
        async with tracked(
            logger, ctx, "EntityContext", "resolve_attributes_by_scope",
            name=name, scope=scope.value,
        ):
            return await self.entities.delegate.find_many(
                {"type": scope.entity_type.value, "name__iexact": name.strip()},
                order_by=["created_at"],
            )

    async def create_or_resolve_contextual_attribute(
        self,
        name: str,
        scope: Union[AttributeScope, str],
        aliases: Iterable[str] = (),
        ctx: Optional[OperationContext] = None,
    ) -> Entity:
        """
        Reuse the attribute named `name` in `scope`, or create it.

        Two writers may both miss the lookup and race to insert; the loser
        gets a unique violation from the (type, lower(name)) index and
        resolves the winner's row instead.
        """
        ctx = OperationContext.ensure(ctx, "create_or_resolve_contextual_attribute")
        scope = coerce_scope(scope)

        existing = await self.resolve_attributes_by_scope(name, scope, ctx=ctx)
        if existing:
            return existing[0]

        try:
            created = await self.entities.create_typed(
                scope.entity_type,
                {"name": name, "aliases": list(dict.fromkeys(aliases))},
                ctx=ctx,
            )
        except UniqueConstraintError:
            logger.info(
                "[%s] %s attribute '%s' created concurrently; resolving",
                ctx, scope.value, name,
            )
            existing = await self.resolve_attributes_by_scope(name, scope, ctx=ctx)
            if not existing:
                raise
            return existing[0]

        logger.info("[%s] Created %s attribute '%s'", ctx, scope.value, created.name)
        return created
