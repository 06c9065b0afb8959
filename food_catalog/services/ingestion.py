"""
Ingestion pipeline — turns extracted mention records into catalog rows.

Pipeline:
  1. Bulk-create restaurant and dish_or_category entities (existing skipped)
  2. Resolve their ids by name
  3. Create-or-resolve scoped attributes; attach restaurant attributes
  4. Upsert one connection per (restaurant, dish_or_category) pair
  5. Bulk-create mentions (sources already recorded are skipped)
  6. Refresh each touched connection's metrics from all of its mentions

Connection scoring:
  Mention score : upvotes * exp(-days_since / 60)
  Top mentions  : best `top_mentions_limit` by score
  Activity      : trending — at least 3 top mentions, all within recent window
                  active   — last mention within `active_mention_days`
                  normal   — otherwise
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence, Union

from pydantic import ValidationError

from food_catalog.config import settings
from food_catalog.context import OperationContext
from food_catalog.exceptions import RepositoryError
from food_catalog.models import Mention
from food_catalog.models.connection import DISH_QUALITY_SCORE_MAX
from food_catalog.repositories.base import merge_unique
from food_catalog.repositories.connections import ConnectionRepository
from food_catalog.repositories.entities import EntityRepository
from food_catalog.repositories.mentions import MentionRepository, summarize_mentions
from food_catalog.schemas.bulk import (
    BulkEntityInput,
    BulkMentionInput,
    BulkOperationConfig,
    BulkOperationResult,
)
from food_catalog.schemas.enums import ActivityLevel, AttributeScope, EntityType
from food_catalog.schemas.ingestion import IngestionSummary, MentionRecord
from food_catalog.services.bulk_operations import BulkOperationsService
from food_catalog.services.resolution import EntityContextService
from food_catalog.store import CatalogStore

logger = logging.getLogger(__name__)

SCORE_DECAY_DAYS = 60
TRENDING_MIN_TOP_MENTIONS = 3


# ── Scoring ──────────────────────────────────────────────────────────────────


def _days_since(moment: datetime, now: datetime) -> float:
    return (now - moment).total_seconds() / 86_400


def mention_score(mention: Mention, now: datetime) -> float:
    """Upvotes decayed by age: halves roughly every 42 days."""
    return (mention.upvotes or 0) * math.exp(-_days_since(mention.created_at, now) / SCORE_DECAY_DAYS)


def compute_connection_metrics(
    mentions: Sequence[Mention],
    *,
    now: Optional[datetime] = None,
    recent_days: int = 30,
    active_days: int = 7,
    top_limit: int = 5,
) -> dict[str, Any]:
    """Metric payload for `update_quality_metrics` derived from a connection's mentions."""
    now = now or datetime.now(timezone.utc)
    stats = summarize_mentions(list(mentions), now=now, recent_days=recent_days)

    scored = sorted(
        ((mention_score(m, now), m) for m in mentions),
        key=lambda pair: pair[0],
        reverse=True,
    )
    top = scored[:top_limit]

    all_top_recent = all(_days_since(m.created_at, now) <= recent_days for _, m in top)
    if top and all_top_recent and len(top) >= TRENDING_MIN_TOP_MENTIONS:
        activity = ActivityLevel.TRENDING
    elif stats.last_mentioned_at and _days_since(stats.last_mentioned_at, now) <= active_days:
        activity = ActivityLevel.ACTIVE
    else:
        activity = ActivityLevel.NORMAL

    return {
        "mention_count": stats.total_mentions,
        "total_upvotes": stats.total_upvotes,
        "source_diversity": stats.unique_communities,
        "recent_mention_count": stats.recent_mentions,
        "last_mentioned_at": stats.last_mentioned_at,
        "activity_level": activity,
        "top_mentions": [
            {
                "mention_id": m.mention_id,
                "score": round(score, 4),
                "upvotes": m.upvotes,
                "created_at": m.created_at.isoformat(),
                "source_url": m.source_url,
                "content_excerpt": m.content_excerpt,
            }
            for score, m in top
        ],
        "dish_quality_score": round(
            min(sum(score for score, _ in scored), DISH_QUALITY_SCORE_MAX), 4
        ),
    }


# ── Pipeline ─────────────────────────────────────────────────────────────────


def _clean(name: str) -> str:
    return name.strip()


class IngestionPipeline:
    """Runs mention records through the bulk, resolution, and connection accessors."""

    def __init__(
        self,
        store: Optional[CatalogStore] = None,
        bulk_config: Optional[Union[BulkOperationConfig, dict[str, Any]]] = None,
    ) -> None:
        store = store or CatalogStore()
        self.entities = EntityRepository(store)
        self.connections = ConnectionRepository(store, self.entities)
        self.mentions = MentionRepository(store)
        self.resolution = EntityContextService(store, self.entities, self.connections)
        self.bulk = BulkOperationsService(store)
        self.bulk_config = bulk_config

    async def ingest(
        self,
        records: Iterable[Union[MentionRecord, dict[str, Any]]],
        ctx: Optional[OperationContext] = None,
    ) -> IngestionSummary:
        ctx = OperationContext.ensure(ctx, "ingest")
        summary = IngestionSummary()

        parsed: list[MentionRecord] = []
        for index, raw in enumerate(records):
            summary.records += 1
            try:
                parsed.append(raw if isinstance(raw, MentionRecord) else MentionRecord.model_validate(raw))
            except ValidationError as exc:
                self._fail(summary, f"record {index}: {exc.error_count()} validation errors")
        if not parsed:
            logger.info("[%s] Nothing to ingest", ctx)
            return summary

        logger.info("[%s] Ingesting %d records", ctx, len(parsed))

        restaurants, dishes = await self._create_entities(parsed, summary, ctx)
        dish_attr_ids, restaurant_attr_ids = await self._resolve_attributes(parsed, summary, ctx)
        await self._attach_restaurant_attributes(parsed, restaurants, restaurant_attr_ids, summary, ctx)
        connection_ids = await self._upsert_connections(
            parsed, restaurants, dishes, dish_attr_ids, summary, ctx
        )
        await self._create_mentions(parsed, connection_ids, summary, ctx)
        await self._refresh_connections(set(connection_ids.values()), summary, ctx)

        logger.info(
            "[%s] Ingestion done: %d entities, %d attributes, %d connections, "
            "%d mentions, %d refreshed, %d failures",
            ctx, summary.entities_created, summary.attributes_resolved,
            summary.connections_upserted, summary.mentions_created,
            summary.connections_refreshed, summary.failures,
        )
        return summary

    # ── Steps ────────────────────────────────────────────────────────────────

    def _fail(self, summary: IngestionSummary, message: str) -> None:
        summary.failures += 1
        summary.errors.append(message)

    def _absorb(self, summary: IngestionSummary, step: str, result: BulkOperationResult) -> None:
        summary.failures += len(result.errors)
        summary.errors.extend(f"{step} item {e.item_index}: {e.error}" for e in result.errors)

    async def _create_entities(
        self, records: list[MentionRecord], summary: IngestionSummary, ctx: OperationContext
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Create missing restaurants and dishes; return name → entity maps."""
        restaurant_inputs: dict[str, BulkEntityInput] = {}
        dish_names: dict[str, None] = {}
        for record in records:
            name = _clean(record.restaurant_name)
            restaurant_inputs.setdefault(name, BulkEntityInput(
                name=name,
                type=EntityType.RESTAURANT,
                address=record.restaurant_address,
                latitude=record.latitude,
                longitude=record.longitude,
                google_place_id=record.google_place_id,
            ))
            dish_names[_clean(record.dish_name)] = None
            for category in record.categories:
                dish_names[_clean(category)] = None

        inputs = list(restaurant_inputs.values()) + [
            BulkEntityInput(name=name, type=EntityType.DISH_OR_CATEGORY) for name in dish_names
        ]
        result = await self.bulk.bulk_create_entities(inputs, self.bulk_config, ctx=ctx.child("entities"))
        summary.entities_created += result.success_count
        self._absorb(summary, "entity", result)

        restaurants = await self.entities.find_by_names(EntityType.RESTAURANT, restaurant_inputs, ctx=ctx)
        dishes = await self.entities.find_by_names(EntityType.DISH_OR_CATEGORY, dish_names, ctx=ctx)
        return {e.name: e for e in restaurants}, {e.name: e for e in dishes}

    async def _resolve_attributes(
        self, records: list[MentionRecord], summary: IngestionSummary, ctx: OperationContext
    ) -> tuple[dict[str, str], dict[str, str]]:
        """lower(name) → attribute entity id, per scope."""
        resolved: dict[AttributeScope, dict[str, str]] = {
            AttributeScope.DISH: {},
            AttributeScope.RESTAURANT: {},
        }
        wanted = {
            AttributeScope.DISH: [a for r in records for a in r.dish_attributes],
            AttributeScope.RESTAURANT: [a for r in records for a in r.restaurant_attributes],
        }
        for scope, names in wanted.items():
            for name in dict.fromkeys(_clean(n) for n in names if n.strip()):
                key = name.lower()
                if key in resolved[scope]:
                    continue
                try:
                    entity = await self.resolution.create_or_resolve_contextual_attribute(
                        name, scope, ctx=ctx
                    )
                except RepositoryError as exc:
                    self._fail(summary, f"{scope.value} attribute '{name}': {exc}")
                    continue
                resolved[scope][key] = entity.entity_id
                summary.attributes_resolved += 1
        return resolved[AttributeScope.DISH], resolved[AttributeScope.RESTAURANT]

    async def _attach_restaurant_attributes(
        self,
        records: list[MentionRecord],
        restaurants: dict[str, Any],
        attribute_ids: dict[str, str],
        summary: IngestionSummary,
        ctx: OperationContext,
    ) -> None:
        wanted: dict[str, list[str]] = {}
        for record in records:
            ids = [attribute_ids[a.strip().lower()] for a in record.restaurant_attributes
                   if a.strip().lower() in attribute_ids]
            if ids:
                name = _clean(record.restaurant_name)
                wanted[name] = merge_unique(wanted.get(name), ids)

        for name, ids in wanted.items():
            restaurant = restaurants.get(name)
            if restaurant is None:
                continue
            merged = merge_unique(restaurant.restaurant_attributes, ids)
            if merged == list(restaurant.restaurant_attributes or []):
                continue
            try:
                await self.entities.update_typed(
                    restaurant.entity_id,
                    {"restaurant_attributes": merged},
                    expected_kind=EntityType.RESTAURANT,
                    ctx=ctx,
                )
            except RepositoryError as exc:
                self._fail(summary, f"restaurant '{name}' attributes: {exc}")

    async def _upsert_connections(
        self,
        records: list[MentionRecord],
        restaurants: dict[str, Any],
        dishes: dict[str, Any],
        dish_attr_ids: dict[str, str],
        summary: IngestionSummary,
        ctx: OperationContext,
    ) -> dict[tuple[str, str], str]:
        """(restaurant name, dish name) → connection id."""
        pairs: dict[tuple[str, str], dict[str, Any]] = {}
        for record in records:
            key = (_clean(record.restaurant_name), _clean(record.dish_name))
            fields = pairs.setdefault(key, {"categories": [], "dish_attributes": [], "is_menu_item": False})
            fields["categories"] = merge_unique(
                fields["categories"],
                [dishes[_clean(c)].entity_id for c in record.categories if _clean(c) in dishes],
            )
            fields["dish_attributes"] = merge_unique(
                fields["dish_attributes"],
                [dish_attr_ids[a.strip().lower()] for a in record.dish_attributes
                 if a.strip().lower() in dish_attr_ids],
            )
            fields["is_menu_item"] = fields["is_menu_item"] or record.is_menu_item

        connection_ids: dict[tuple[str, str], str] = {}
        for (restaurant_name, dish_name), fields in pairs.items():
            restaurant, dish = restaurants.get(restaurant_name), dishes.get(dish_name)
            if restaurant is None or dish is None:
                self._fail(summary, f"connection {restaurant_name}/{dish_name}: entity not available")
                continue
            try:
                connection = await self.connections.upsert_by_pair(
                    restaurant.entity_id, dish.entity_id, fields, ctx=ctx
                )
            except RepositoryError as exc:
                self._fail(summary, f"connection {restaurant_name}/{dish_name}: {exc}")
                continue
            connection_ids[(restaurant_name, dish_name)] = connection.connection_id
            summary.connections_upserted += 1
        return connection_ids

    async def _create_mentions(
        self,
        records: list[MentionRecord],
        connection_ids: dict[tuple[str, str], str],
        summary: IngestionSummary,
        ctx: OperationContext,
    ) -> None:
        inputs: list[BulkMentionInput] = []
        for record in records:
            connection_id = connection_ids.get(
                (_clean(record.restaurant_name), _clean(record.dish_name))
            )
            if connection_id is None:
                continue
            inputs.append(BulkMentionInput(
                connection_id=connection_id,
                source_type=record.source_type,
                source_id=record.source_id,
                source_url=record.source_url,
                subreddit=record.subreddit,
                content_excerpt=record.content_excerpt,
                author=record.author,
                upvotes=record.upvotes,
                created_at=record.created_at,
            ))
        if not inputs:
            return
        result = await self.bulk.bulk_create_mentions(inputs, self.bulk_config, ctx=ctx.child("mentions"))
        summary.mentions_created += result.success_count
        self._absorb(summary, "mention", result)

    async def _refresh_connections(
        self, connection_ids: set[str], summary: IngestionSummary, ctx: OperationContext
    ) -> None:
        now = datetime.now(timezone.utc)
        for connection_id in sorted(connection_ids):
            try:
                mentions = await self.mentions.find_by_connection(connection_id, ctx=ctx)
                if not mentions:
                    continue
                metrics = compute_connection_metrics(
                    mentions,
                    now=now,
                    recent_days=settings.recent_mention_days,
                    active_days=settings.active_mention_days,
                    top_limit=settings.top_mentions_limit,
                )
                await self.connections.update_quality_metrics(connection_id, metrics, ctx=ctx)
            except RepositoryError as exc:
                self._fail(summary, f"refresh connection {connection_id}: {exc}")
                continue
            summary.connections_refreshed += 1
