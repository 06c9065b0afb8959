"""
Entity accessor — typed reads and writes for the four entity kinds.

Kind rules are checked before any store call:
  - every kind needs a non-empty name;
  - a restaurant needs location data (an address, or a latitude/longitude pair);
  - the other three kinds carry only name + aliases;
  - `type` is fixed at creation and never updated.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Optional, Union

from food_catalog.context import OperationContext
from food_catalog.exceptions import CatalogValidationError, EntityNotFoundError
from food_catalog.models import Entity
from food_catalog.models.entity import new_id
from food_catalog.repositories.base import find_by_id, tracked
from food_catalog.schemas.enums import EntityType
from food_catalog.store import CatalogStore

logger = logging.getLogger(__name__)

COMMON_FIELDS = frozenset({"name", "aliases"})
RESTAURANT_ONLY_FIELDS = frozenset({
    "restaurant_attributes",
    "restaurant_quality_score",
    "latitude",
    "longitude",
    "address",
    "google_place_id",
    "restaurant_metadata",
})
IMMUTABLE_FIELDS = frozenset({"entity_id", "type", "created_at"})

LOCATION_FIELD = "location (address or latitude/longitude)"

KM_PER_DEGREE = 111.0


# ── Field rules ──────────────────────────────────────────────────────────────


def coerce_kind(kind: Union[EntityType, str]) -> EntityType:
    try:
        return EntityType(kind)
    except ValueError:
        raise CatalogValidationError("Entity", [f"unknown entity type '{kind}'"]) from None


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _populated(value: Any) -> bool:
    if isinstance(value, (list, dict, str)):
        return bool(value)
    return value is not None


def _coordinate_errors(fields: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    lat, lng = fields.get("latitude"), fields.get("longitude")
    if (lat is None) != (lng is None):
        errors.append("latitude and longitude must be given together")
    if lat is not None and not -90 <= lat <= 90:
        errors.append("latitude must be between -90 and 90")
    if lng is not None and not -180 <= lng <= 180:
        errors.append("longitude must be between -180 and 180")
    return errors


def validate_entity_fields(
    kind: EntityType, fields: dict[str, Any], *, partial: bool = False
) -> None:
    """
    Raise CatalogValidationError if `fields` break the rules for `kind`.
    `partial` validates an update payload: only the given fields are checked.
    """
    errors: list[str] = []
    missing: list[str] = []

    unknown = set(fields) - COMMON_FIELDS - RESTAURANT_ONLY_FIELDS - IMMUTABLE_FIELDS
    errors.extend(f"unknown field '{f}'" for f in sorted(unknown))

    if partial:
        errors.extend(
            f"field '{f}' cannot be updated" for f in sorted(IMMUTABLE_FIELDS & set(fields))
        )
    elif "type" in fields and fields["type"] not in (kind, kind.value):
        errors.append(f"type '{fields['type']}' does not match '{kind.value}'")

    if (not partial or "name" in fields) and _blank(fields.get("name")):
        missing.append("name")

    if kind is EntityType.RESTAURANT:
        errors.extend(_coordinate_errors(fields))
        has_coordinates = (
            fields.get("latitude") is not None and fields.get("longitude") is not None
        )
        if not partial and not has_coordinates and _blank(fields.get("address")):
            missing.append(LOCATION_FIELD)
        score = fields.get("restaurant_quality_score")
        if score is not None and not 0 <= score <= 100:
            errors.append("restaurant_quality_score must be between 0 and 100")
    else:
        leaked = sorted(f for f in RESTAURANT_ONLY_FIELDS & set(fields) if _populated(fields[f]))
        errors.extend(f"field '{f}' does not belong to {kind.value}" for f in leaked)

    if missing or errors:
        raise CatalogValidationError(
            kind.value,
            [f"missing required field: {m}" for m in missing] + errors,
            missing_fields=missing,
        )


def build_entity_row(kind: EntityType, fields: dict[str, Any]) -> dict[str, Any]:
    """
    Full insert row for `kind`. Every row has the same keys so rows of
    mixed kinds can share one multi-row INSERT.
    """
    row: dict[str, Any] = {
        "entity_id": new_id(),
        "name": fields["name"].strip(),
        "type": kind.value,
        "aliases": list(fields.get("aliases") or []),
        "restaurant_attributes": [],
        "restaurant_quality_score": None,
        "latitude": None,
        "longitude": None,
        "address": None,
        "google_place_id": None,
        "restaurant_metadata": {},
    }
    if kind is EntityType.RESTAURANT:
        row.update(
            restaurant_attributes=list(fields.get("restaurant_attributes") or []),
            restaurant_quality_score=fields.get("restaurant_quality_score") or 0,
            latitude=fields.get("latitude"),
            longitude=fields.get("longitude"),
            address=fields.get("address"),
            google_place_id=fields.get("google_place_id"),
            restaurant_metadata=dict(fields.get("restaurant_metadata") or {}),
        )
    return row


# ── Accessor ─────────────────────────────────────────────────────────────────


class EntityRepository:
    """Typed CRUD + kind validation over the `entities` delegate."""

    entity_name = "Entity"

    def __init__(self, store: Optional[CatalogStore] = None) -> None:
        self._store = store or CatalogStore()

    @property
    def delegate(self):
        return self._store.entities

    async def create_typed(
        self,
        kind: Union[EntityType, str],
        fields: dict[str, Any],
        ctx: Optional[OperationContext] = None,
    ) -> Entity:
        """Validate `fields` for `kind`, then insert. Validation issues no store call."""
        ctx = OperationContext.ensure(ctx, "create_typed")
        kind = coerce_kind(kind)
        validate_entity_fields(kind, fields)
        async with tracked(logger, ctx, self.entity_name, "create_typed", kind=kind.value):
            return await self.delegate.create(build_entity_row(kind, fields))

    async def find_by_id(
        self, entity_id: str, ctx: Optional[OperationContext] = None
    ) -> Optional[Entity]:
        ctx = OperationContext.ensure(ctx, "find_by_id")
        async with tracked(logger, ctx, self.entity_name, "find_by_id", entity_id=entity_id):
            return await find_by_id(self.delegate, entity_id)

    async def find_by_type(
        self,
        kind: Union[EntityType, str],
        *,
        order_by: Optional[list[str]] = None,
        skip: Optional[int] = None,
        take: Optional[int] = None,
        ctx: Optional[OperationContext] = None,
    ) -> list[Entity]:
        ctx = OperationContext.ensure(ctx, "find_by_type")
        kind = coerce_kind(kind)
        async with tracked(logger, ctx, self.entity_name, "find_by_type", kind=kind.value):
            return await self.delegate.find_many(
                {"type": kind.value}, order_by=order_by, skip=skip, take=take
            )

    async def find_by_name_or_alias(
        self,
        term: str,
        kind: Optional[Union[EntityType, str]] = None,
        *,
        skip: Optional[int] = None,
        take: Optional[int] = None,
        ctx: Optional[OperationContext] = None,
    ) -> list[Entity]:
        """
        Case-insensitive substring match on name, or exact match on any alias.
        Ordered by name, then quality score (highest first).
        """
        ctx = OperationContext.ensure(ctx, "find_by_name_or_alias")
        if _blank(term):
            raise CatalogValidationError(self.entity_name, ["search term is required"])
        where = {"type": coerce_kind(kind).value} if kind is not None else None
        async with tracked(logger, ctx, self.entity_name, "find_by_name_or_alias", term=term):
            return await self.delegate.find_many(
                where,
                any_of=[{"name__icontains": term}, {"aliases__has": term}],
                order_by=["name", "-restaurant_quality_score"],
                skip=skip,
                take=take,
            )

    async def find_by_names(
        self,
        kind: Union[EntityType, str],
        names: Iterable[str],
        ctx: Optional[OperationContext] = None,
    ) -> list[Entity]:
        """Exact-name lookup of many entities of one kind."""
        ctx = OperationContext.ensure(ctx, "find_by_names")
        kind = coerce_kind(kind)
        names = list(dict.fromkeys(names))
        if not names:
            return []
        async with tracked(logger, ctx, self.entity_name, "find_by_names", count=len(names)):
            return await self.delegate.find_many(
                {"type": kind.value, "name__in": names}
            )

    async def find_restaurants_by_location(
        self,
        latitude: float,
        longitude: float,
        radius_km: float = 10,
        *,
        take: Optional[int] = None,
        ctx: Optional[OperationContext] = None,
    ) -> list[Entity]:
        """Restaurants inside the bounding box around a point, best score first."""
        ctx = OperationContext.ensure(ctx, "find_restaurants_by_location")
        lat_delta = radius_km / KM_PER_DEGREE
        lng_delta = radius_km / (KM_PER_DEGREE * max(math.cos(math.radians(latitude)), 1e-6))
        async with tracked(
            logger, ctx, self.entity_name, "find_restaurants_by_location",
            latitude=latitude, longitude=longitude, radius_km=radius_km,
        ):
            return await self.delegate.find_many(
                {
                    "type": EntityType.RESTAURANT.value,
                    "latitude__gte": latitude - lat_delta,
                    "latitude__lte": latitude + lat_delta,
                    "longitude__gte": longitude - lng_delta,
                    "longitude__lte": longitude + lng_delta,
                },
                order_by=["-restaurant_quality_score"],
                take=take,
            )

    async def update_typed(
        self,
        entity_id: str,
        fields: dict[str, Any],
        expected_kind: Optional[Union[EntityType, str]] = None,
        ctx: Optional[OperationContext] = None,
    ) -> Entity:
        """
        Update an entity. With `expected_kind`, the payload is checked against
        that kind's field set before any store call, and the stored row must
        be of that kind.
        """
        ctx = OperationContext.ensure(ctx, "update_typed")
        if not fields:
            raise CatalogValidationError(self.entity_name, ["no fields to update"])
        if expected_kind is not None:
            expected_kind = coerce_kind(expected_kind)
            validate_entity_fields(expected_kind, fields, partial=True)
        else:
            # Kind unknown yet: apply the restaurant rules, the widest field set
            validate_entity_fields(EntityType.RESTAURANT, fields, partial=True)

        async with tracked(logger, ctx, self.entity_name, "update_typed", entity_id=entity_id):
            needs_kind_check = expected_kind is not None or bool(
                RESTAURANT_ONLY_FIELDS & set(fields)
            )
            if needs_kind_check:
                existing = await find_by_id(self.delegate, entity_id)
                if existing is None:
                    raise EntityNotFoundError(self.entity_name, entity_id)
                actual = EntityType(existing.type)
                if expected_kind is not None and actual is not expected_kind:
                    raise CatalogValidationError(
                        self.entity_name,
                        [f"entity {entity_id} is type '{actual.value}', "
                         f"expected '{expected_kind.value}'"],
                    )
                if expected_kind is None:
                    validate_entity_fields(actual, fields, partial=True)

            data = dict(fields)
            if "name" in data:
                data["name"] = data["name"].strip()
            return await self.delegate.update({"entity_id": entity_id}, data)

    async def update_restaurant_quality_score(
        self,
        entity_id: str,
        quality_score: float,
        ctx: Optional[OperationContext] = None,
    ) -> Entity:
        return await self.update_typed(
            entity_id,
            {"restaurant_quality_score": quality_score},
            expected_kind=EntityType.RESTAURANT,
            ctx=ctx,
        )
