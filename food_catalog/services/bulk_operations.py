"""
Bulk write orchestrator — batched creates and per-item upserts with
partial-failure capture.

Flow for every call:
  1. Coerce inputs (dicts → pydantic) and split them into batches of `batch_size`
  2. Run each batch in its own transaction (or straight against the store
     when `enable_transactions` is off)
  3. Inside the batch, creates go out as one skip-existing multi-row INSERT;
     if that write still fails after its retries, the batch is replayed item
     by item in savepoints so only the offending items fail
  4. Fold each batch outcome into the running result once the batch commits

Per-item failures are data, not exceptions: they land in `result.errors`.
Only a batch whose transaction itself aborts propagates to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar, Union

from pydantic import BaseModel, ValidationError

from food_catalog.context import OperationContext
from food_catalog.exceptions import (
    CatalogValidationError,
    DatabaseOperationError,
    RepositoryError,
)
from food_catalog.models import Entity
from food_catalog.models.entity import new_id
from food_catalog.repositories.connections import build_connection_row
from food_catalog.repositories.entities import build_entity_row, validate_entity_fields
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
from food_catalog.store import CatalogStore, build_where

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

ConfigArg = Optional[Union[BulkOperationConfig, dict[str, Any]]]


@dataclass
class _Prepared:
    """An input that passed coercion: its position, the caller's view, the insert row."""

    index: int
    item: dict[str, Any]
    row: dict[str, Any]


@dataclass
class BatchOutcome:
    """Accumulator for one batch. Folded into the call result after commit."""

    batch_index: int
    success: int = 0
    failures: int = 0
    skipped: int = 0
    errors: list[BulkItemError] = field(default_factory=list)

    def succeed(self, n: int = 1) -> None:
        self.success += n

    def skip(self, n: int = 1) -> None:
        self.failures += n
        self.skipped += n

    def fail(self, item_index: int, exc: BaseException, item: dict[str, Any]) -> None:
        self.failures += 1
        self.errors.append(
            BulkItemError(
                batch_index=self.batch_index,
                item_index=item_index,
                error_type=type(exc).__name__,
                error=str(exc),
                item=item,
            )
        )


def _row_values(data: dict[str, Any]) -> dict[str, Any]:
    """Enum members → their stored string values."""
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in data.items()}


def _item_view(raw: Any) -> dict[str, Any]:
    if isinstance(raw, BaseModel):
        return raw.model_dump(mode="json")
    if isinstance(raw, dict):
        return dict(raw)
    return {"value": repr(raw)}


def _coerce(model: type[M], raw: Any) -> M:
    if isinstance(raw, model):
        return raw
    if isinstance(raw, BaseModel):
        return model.model_validate(raw.model_dump())
    return model.model_validate(raw)


class BulkOperationsService:
    """Bulk API consumed by ingestion jobs."""

    def __init__(
        self,
        store: Optional[CatalogStore] = None,
        default_config: Optional[BulkOperationConfig] = None,
    ) -> None:
        self._store = store or CatalogStore()
        self._default_config = default_config or BulkOperationConfig()

    def resolve_config(self, config: ConfigArg = None) -> BulkOperationConfig:
        """Per-call config: a full config wins; a dict overrides the defaults field by field."""
        if config is None:
            return self._default_config
        if isinstance(config, BulkOperationConfig):
            return config
        return BulkOperationConfig(**{**self._default_config.model_dump(), **config})

    # ── Public API ───────────────────────────────────────────────────────────

    async def bulk_create_entities(
        self,
        items: Sequence[Union[BulkEntityInput, dict[str, Any]]],
        config: ConfigArg = None,
        ctx: Optional[OperationContext] = None,
    ) -> BulkOperationResult:
        """Create entities of any kind; existing (name, type) rows are skipped."""

        def prepare(raw: Any) -> dict[str, Any]:
            entity = _coerce(BulkEntityInput, raw)
            fields = entity.model_dump()
            validate_entity_fields(entity.type, fields)
            return build_entity_row(entity.type, fields)

        return await self._run_create(
            "bulk_create_entities", "entities", items, prepare, config, ctx
        )

    async def bulk_create_connections(
        self,
        items: Sequence[Union[BulkConnectionInput, dict[str, Any]]],
        config: ConfigArg = None,
        ctx: Optional[OperationContext] = None,
    ) -> BulkOperationResult:
        """Create connections; existing (restaurant, dish_or_category) pairs are skipped."""

        def prepare(raw: Any) -> dict[str, Any]:
            connection = _coerce(BulkConnectionInput, raw)
            fields = connection.model_dump(exclude={"restaurant_id", "dish_or_category_id"})
            return build_connection_row(
                connection.restaurant_id, connection.dish_or_category_id, fields
            )

        return await self._run_create(
            "bulk_create_connections", "connections", items, prepare, config, ctx
        )

    async def bulk_create_mentions(
        self,
        items: Sequence[Union[BulkMentionInput, dict[str, Any]]],
        config: ConfigArg = None,
        ctx: Optional[OperationContext] = None,
    ) -> BulkOperationResult:
        """Create mentions; a source already recorded for the connection is skipped."""

        def prepare(raw: Any) -> dict[str, Any]:
            mention = _coerce(BulkMentionInput, raw)
            return _row_values({"mention_id": new_id(), **mention.model_dump()})

        return await self._run_create(
            "bulk_create_mentions", "mentions", items, prepare, config, ctx
        )

    async def bulk_upsert_entities(
        self,
        items: Sequence[Union[BulkEntityUpsert, dict[str, Any]]],
        config: ConfigArg = None,
        ctx: Optional[OperationContext] = None,
    ) -> BulkOperationResult:
        """One upsert per item. Each item succeeds or fails on its own."""
        config = self.resolve_config(config)
        ctx = OperationContext.ensure(ctx, "bulk_upsert_entities")

        async def process(store: CatalogStore, outcome: BatchOutcome, batch: list[tuple[int, Any]]) -> None:
            for index, raw in batch:
                try:
                    upsert = _coerce(BulkEntityUpsert, raw)
                    build_where(Entity, upsert.where)
                    kind = upsert.create.type
                    create_fields = upsert.create.model_dump()
                    validate_entity_fields(kind, create_fields)
                    if upsert.update:
                        validate_entity_fields(kind, upsert.update, partial=True)
                except (ValidationError, CatalogValidationError) as exc:
                    outcome.fail(index, exc, _item_view(raw))
                    continue

                create_row = build_entity_row(kind, create_fields)
                update = dict(upsert.update) or {"name": create_row["name"]}
                try:
                    await self._with_retries(
                        store, config, ctx,
                        lambda s, u=upsert, c=create_row, d=update: s.entities.upsert(u.where, c, d),
                    )
                except RepositoryError as exc:
                    logger.warning("[%s] Upsert of item %d failed: %s", ctx, index, exc)
                    outcome.fail(index, exc, _item_view(raw))
                    continue
                outcome.succeed()

        return await self._run_batches(ctx, items, config, process)

    # ── Batch machinery ──────────────────────────────────────────────────────

    async def _run_create(
        self,
        operation: str,
        table: str,
        items: Sequence[Any],
        prepare: Callable[[Any], dict[str, Any]],
        config: ConfigArg,
        ctx: Optional[OperationContext],
    ) -> BulkOperationResult:
        config = self.resolve_config(config)
        ctx = OperationContext.ensure(ctx, operation)

        async def process(store: CatalogStore, outcome: BatchOutcome, batch: list[tuple[int, Any]]) -> None:
            prepared: list[_Prepared] = []
            for index, raw in batch:
                try:
                    prepared.append(_Prepared(index, _item_view(raw), prepare(raw)))
                except (ValidationError, CatalogValidationError) as exc:
                    outcome.fail(index, exc, _item_view(raw))
            if prepared:
                await self._create_batch(store, table, prepared, outcome, config, ctx)

        return await self._run_batches(ctx, items, config, process)

    async def _create_batch(
        self,
        store: CatalogStore,
        table: str,
        prepared: list[_Prepared],
        outcome: BatchOutcome,
        config: BulkOperationConfig,
        ctx: OperationContext,
    ) -> None:
        rows = [p.row for p in prepared]
        try:
            inserted = await self._with_retries(
                store, config, ctx,
                lambda s: getattr(s, table).create_many(rows, skip_duplicates=True),
            )
        except RepositoryError as exc:
            logger.warning(
                "[%s] Batch %d: %s; replaying %d items one by one",
                ctx, outcome.batch_index, type(exc).__name__, len(prepared),
            )
            await self._replay_items(store, table, prepared, outcome, config, ctx)
            return

        outcome.succeed(inserted)
        if inserted < len(rows):
            outcome.skip(len(rows) - inserted)
            logger.debug(
                "[%s] Batch %d: %d existing rows skipped",
                ctx, outcome.batch_index, len(rows) - inserted,
            )

    async def _replay_items(
        self,
        store: CatalogStore,
        table: str,
        prepared: list[_Prepared],
        outcome: BatchOutcome,
        config: BulkOperationConfig,
        ctx: OperationContext,
    ) -> None:
        for p in prepared:
            try:
                inserted = await self._with_retries(
                    store, config, ctx,
                    lambda s, row=p.row: getattr(s, table).create_many([row], skip_duplicates=True),
                )
            except RepositoryError as exc:
                logger.warning("[%s] Item %d failed: %s", ctx, p.index, exc)
                outcome.fail(p.index, exc, p.item)
                continue
            if inserted:
                outcome.succeed()
            else:
                outcome.skip()

    async def _with_retries(
        self,
        store: CatalogStore,
        config: BulkOperationConfig,
        ctx: OperationContext,
        fn: Callable[[CatalogStore], Awaitable[T]],
    ) -> T:
        """
        Run `fn` inside a savepoint, retrying transient store failures.
        Constraint and validation failures are raised on the first attempt.
        """
        attempt = 0
        while True:
            try:
                async with store.savepoint():
                    return await fn(store)
            except DatabaseOperationError as exc:
                if attempt >= config.max_retries:
                    raise
                attempt += 1
                logger.warning(
                    "[%s] Store failure (attempt %d/%d), retrying in %.0fms: %s",
                    ctx, attempt, config.max_retries, config.retry_delay, exc,
                )
                await asyncio.sleep(config.retry_delay / 1000)

    async def _run_batches(
        self,
        ctx: OperationContext,
        items: Sequence[Any],
        config: BulkOperationConfig,
        process: Callable[[CatalogStore, BatchOutcome, list[tuple[int, Any]]], Awaitable[None]],
    ) -> BulkOperationResult:
        items = list(items)
        batch_count = math.ceil(len(items) / config.batch_size)
        result = BulkOperationResult()
        start = time.perf_counter() if config.enable_metrics else None

        logger.info(
            "[%s] Starting: %d items in %d batches (batch_size=%d, transactions=%s)",
            ctx, len(items), batch_count, config.batch_size, config.enable_transactions,
        )

        for batch_index in range(batch_count):
            offset = batch_index * config.batch_size
            batch = list(enumerate(items[offset:offset + config.batch_size], start=offset))
            outcome = BatchOutcome(batch_index=batch_index)

            async def unit(store: CatalogStore) -> None:
                await process(store, outcome, batch)

            if config.enable_transactions:
                await self._store.run_in_transaction(unit)
            else:
                await unit(self._store)

            result.success_count += outcome.success
            result.failure_count += outcome.failures
            result.skipped_count += outcome.skipped
            result.errors.extend(outcome.errors)
            logger.debug(
                "[%s] Batch %d/%d done: %d ok, %d failed",
                ctx, batch_index + 1, batch_count, outcome.success, outcome.failures,
            )

        result.errors.sort(key=lambda e: e.item_index)
        result.metrics = BulkOperationMetrics(
            total_items=len(items),
            success_count=result.success_count,
            failure_count=result.failure_count,
            batch_count=batch_count,
        )
        if start is not None:
            duration = (time.perf_counter() - start) * 1000
            result.metrics.duration = duration
            result.metrics.throughput = (
                result.success_count / (duration / 1000) if duration > 0 else 0.0
            )
            logger.info(
                "[%s] Completed: %d ok, %d failed (%d skipped) in %d batches, "
                "%.1fms, %.1f items/s",
                ctx, result.success_count, result.failure_count, result.skipped_count,
                batch_count, duration, result.metrics.throughput,
            )
        return result
