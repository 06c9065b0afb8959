"""Tests for BulkOperationsService batching, partial failures, retries, and metrics."""

import math
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import DBAPIError

from food_catalog.exceptions import (
    DatabaseOperationError,
    ForeignKeyConstraintError,
    UniqueConstraintError,
    translate_store_error,
)
from food_catalog.schemas.bulk import BulkEntityInput, BulkOperationConfig
from food_catalog.services.bulk_operations import BulkOperationsService


def dishes(n):
    return [{"name": f"Dish {i}", "type": "dish_or_category"} for i in range(n)]


def connections(n, bad=()):
    return [
        {"restaurant_id": "missing" if i in bad else "r-1", "dish_or_category_id": f"d-{i}"}
        for i in range(n)
    ]


def config(**overrides):
    base = {"batch_size": 100, "retry_delay": 0, "max_retries": 2}
    return BulkOperationConfig(**{**base, **overrides})


def store_failure():
    return DatabaseOperationError("create_many", "Entity", RuntimeError("connection reset"))


def rejected(entity_type, sqlstate):
    orig = Exception("rejected by the database")
    orig.sqlstate = sqlstate
    return translate_store_error(DBAPIError("INSERT ...", {}, orig), "create_many", entity_type)


class TestBatching:
    @pytest.mark.asyncio
    async def test_300_entities_in_batches_of_100(self, store):
        result = await BulkOperationsService(store).bulk_create_entities(
            [BulkEntityInput(**item) for item in dishes(300)], config(batch_size=100)
        )

        assert result.success_count == 300
        assert result.failure_count == 0
        assert result.metrics.batch_count == 3
        assert result.metrics.total_items == 300
        assert store.transactions == 3
        assert store.entities.create_many.await_count == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("n,batch_size", [(1, 100), (99, 100), (100, 100), (101, 100), (250, 40)])
    async def test_batch_count_is_ceiling(self, store, n, batch_size):
        result = await BulkOperationsService(store).bulk_create_entities(
            dishes(n), config(batch_size=batch_size)
        )

        expected = math.ceil(n / batch_size)
        assert result.metrics.batch_count == expected
        assert store.entities.create_many.await_count == expected
        assert result.success_count + result.failure_count == n

    @pytest.mark.asyncio
    async def test_batches_keep_input_order(self, store):
        await BulkOperationsService(store).bulk_create_entities(dishes(5), config(batch_size=2))

        names = [
            [row["name"] for row in call.args[0]]
            for call in store.entities.create_many.call_args_list
        ]
        assert names == [["Dish 0", "Dish 1"], ["Dish 2", "Dish 3"], ["Dish 4"]]

    @pytest.mark.asyncio
    async def test_empty_input_touches_nothing(self, store):
        result = await BulkOperationsService(store).bulk_create_entities([], config())

        assert result.metrics.batch_count == 0
        assert result.success_count == result.failure_count == 0
        assert store.transactions == 0
        assert store.store_calls == 0

    @pytest.mark.asyncio
    async def test_without_transactions_writes_directly(self, store):
        result = await BulkOperationsService(store).bulk_create_entities(
            dishes(10), config(enable_transactions=False, batch_size=5)
        )
        assert result.success_count == 10
        assert store.transactions == 0
        assert store.entities.create_many.await_count == 2


class TestPartialFailures:
    @pytest.mark.asyncio
    async def test_foreign_key_failure_costs_exactly_one_item(self, store):
        def create_many(rows, skip_duplicates=True):
            if any(r["restaurant_id"] == "missing" for r in rows):
                raise ForeignKeyConstraintError("Connection", "restaurant_id", "restaurant")
            return len(rows)

        store.connections.create_many.side_effect = create_many

        result = await BulkOperationsService(store).bulk_create_connections(
            connections(10, bad={3}), config(batch_size=5)
        )

        assert result.success_count == 9
        assert result.failure_count == 1
        assert len(result.errors) == 1
        error = result.errors[0]
        assert (error.batch_index, error.item_index) == (0, 3)
        assert error.error_type == "ForeignKeyConstraintError"
        assert error.item["dish_or_category_id"] == "d-3"
        assert result.metrics.batch_count == 2

    @pytest.mark.asyncio
    async def test_errors_follow_input_order(self, store):
        def create_many(rows, skip_duplicates=True):
            if any(r["restaurant_id"] == "missing" for r in rows):
                raise ForeignKeyConstraintError("Connection", "restaurant_id", "restaurant")
            return len(rows)

        store.connections.create_many.side_effect = create_many

        result = await BulkOperationsService(store).bulk_create_connections(
            connections(9, bad={7, 1, 4}), config(batch_size=3)
        )

        assert [e.item_index for e in result.errors] == [1, 4, 7]
        assert result.success_count + result.failure_count == 9

    @pytest.mark.asyncio
    async def test_existing_rows_are_skipped_not_errors(self, store):
        store.entities.create_many.side_effect = lambda rows, skip_duplicates=True: len(rows) - 2

        result = await BulkOperationsService(store).bulk_create_entities(dishes(10), config())

        assert result.success_count == 8
        assert result.failure_count == 2
        assert result.skipped_count == 2
        assert result.errors == []
        store.entities.create_many.assert_awaited_once()
        assert store.entities.create_many.call_args.kwargs == {"skip_duplicates": True}

    @pytest.mark.asyncio
    async def test_invalid_entities_never_reach_the_store(self, store):
        items = dishes(3) + [
            {"name": "Luigi's", "type": "restaurant"},   # no location
            {"name": "Mystery"},                          # no type
        ]

        result = await BulkOperationsService(store).bulk_create_entities(items, config())

        assert result.success_count == 3
        assert result.failure_count == 2
        assert [e.error_type for e in result.errors] == ["CatalogValidationError", "ValidationError"]
        (rows,), _ = store.entities.create_many.call_args
        assert len(rows) == 3

    @pytest.mark.asyncio
    async def test_transaction_abort_propagates(self, store):
        store.fail_transaction = DatabaseOperationError("transaction", "Transaction", RuntimeError("abort"))

        with pytest.raises(DatabaseOperationError):
            await BulkOperationsService(store).bulk_create_entities(dishes(5), config())

    @pytest.mark.asyncio
    async def test_mentions_batch(self, store):
        created_at = datetime(2024, 5, 1, tzinfo=timezone.utc)
        items = [
            {
                "connection_id": "conn-1", "source_type": "comment", "source_id": f"t1_{i}",
                "source_url": "https://reddit.com/x", "subreddit": "food",
                "content_excerpt": "great", "upvotes": i, "created_at": created_at,
            }
            for i in range(4)
        ]

        result = await BulkOperationsService(store).bulk_create_mentions(items, config())

        assert result.success_count == 4
        (rows,), _ = store.mentions.create_many.call_args
        assert rows[0]["source_type"] == "comment"
        assert all(row["mention_id"] for row in rows)


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, store):
        store.entities.create_many.side_effect = [store_failure(), 5]

        result = await BulkOperationsService(store).bulk_create_entities(dishes(5), config())

        assert result.success_count == 5
        assert store.entities.create_many.await_count == 2

    @pytest.mark.asyncio
    async def test_persistent_store_failure_is_recorded_per_item(self, store):
        store.entities.create_many.side_effect = store_failure()

        result = await BulkOperationsService(store).bulk_create_entities(
            dishes(5), config(max_retries=2)
        )

        assert result.success_count == 0
        assert result.failure_count == 5
        assert {e.error_type for e in result.errors} == {"DatabaseOperationError"}
        # three batch attempts, then three attempts per replayed item
        assert store.entities.create_many.await_count == 3 + 5 * 3

    @pytest.mark.asyncio
    async def test_check_violation_is_not_retried(self, store):
        store.connections.create_many.side_effect = rejected("Connection", "23514")

        result = await BulkOperationsService(store).bulk_create_connections(
            connections(1), config(max_retries=3)
        )

        assert result.failure_count == 1
        assert result.errors[0].error_type == "CatalogValidationError"
        assert store.connections.create_many.await_count == 2

    @pytest.mark.asyncio
    async def test_constraint_failures_are_not_retried(self, store):
        store.connections.create_many.side_effect = ForeignKeyConstraintError(
            "Connection", "restaurant_id", "restaurant"
        )

        result = await BulkOperationsService(store).bulk_create_connections(connections(2), config())

        assert result.failure_count == 2
        # one batch attempt plus one replay per item
        assert store.connections.create_many.await_count == 3


    @pytest.mark.asyncio
    async def test_value_rejected_by_database_fails_only_its_item(self, store):
        items = dishes(3)
        items[1]["name"] = "x" * 300

        def create_many(rows, skip_duplicates=True):
            if any(len(r["name"]) > 255 for r in rows):
                raise rejected("Entity", "22001")
            return len(rows)

        store.entities.create_many.side_effect = create_many

        result = await BulkOperationsService(store).bulk_create_entities(items, config())

        assert result.success_count == 2
        assert result.failure_count == 1
        assert result.errors[0].item_index == 1
        assert result.errors[0].error_type == "CatalogValidationError"
        # one batch attempt plus one replay per item, no retries
        assert store.entities.create_many.await_count == 4


class TestUpsert:
    @pytest.mark.asyncio
    async def test_unknown_where_column_fails_only_its_item(self, store):
        create = {"name": "Ramen", "type": "dish_or_category"}
        items = [
            {"where": {"entityId": "x"}, "create": create},
            {"where": {"name": "Ramen", "type": "dish_or_category"}, "create": create},
        ]

        result = await BulkOperationsService(store).bulk_upsert_entities(items, config())

        assert result.success_count == 1
        assert result.failure_count == 1
        assert result.errors[0].item_index == 0
        assert result.errors[0].error_type == "CatalogValidationError"
        assert "entityId" in result.errors[0].error
        assert store.entities.upsert.await_count == 1

    @pytest.mark.asyncio
    async def test_failed_item_does_not_stop_the_next(self, store):
        store.entities.upsert.side_effect = [
            UniqueConstraintError("Entity", ["google_place_id"]),
            object(),
            object(),
        ]
        items = [
            {
                "where": {"name": f"Dish {i}", "type": "dish_or_category"},
                "create": {"name": f"Dish {i}", "type": "dish_or_category"},
                "update": {"aliases": [f"d{i}"]},
            }
            for i in range(3)
        ]

        result = await BulkOperationsService(store).bulk_upsert_entities(items, config())

        assert result.success_count == 2
        assert result.failure_count == 1
        assert result.errors[0].item_index == 0
        assert result.errors[0].error_type == "UniqueConstraintError"
        assert store.entities.upsert.await_count == 3

    @pytest.mark.asyncio
    async def test_update_payload_is_kind_checked(self, store):
        items = [{
            "where": {"name": "Ramen", "type": "dish_or_category"},
            "create": {"name": "Ramen", "type": "dish_or_category"},
            "update": {"address": "1 Main St"},
        }]

        result = await BulkOperationsService(store).bulk_upsert_entities(items, config())

        assert result.failure_count == 1
        assert store.entities.upsert.await_count == 0


class TestMetricsAndConfig:
    @pytest.mark.asyncio
    async def test_metrics_are_consistent(self, store):
        result = await BulkOperationsService(store).bulk_create_entities(dishes(20), config(batch_size=7))

        metrics = result.metrics
        assert metrics.success_count == result.success_count == 20
        assert metrics.failure_count == 0
        assert metrics.duration >= 0
        assert metrics.throughput >= 0

    @pytest.mark.asyncio
    async def test_disabled_metrics_skip_timing(self, store):
        result = await BulkOperationsService(store).bulk_create_entities(
            dishes(3), config(enable_metrics=False)
        )
        assert result.metrics.duration == 0
        assert result.metrics.throughput == 0
        assert result.metrics.batch_count == 1

    def test_dict_config_overrides_defaults(self, store):
        service = BulkOperationsService(store, default_config=config(batch_size=300))
        resolved = service.resolve_config({"batch_size": 50})
        assert resolved.batch_size == 50
        assert resolved.retry_delay == 0
        assert service.resolve_config() is service._default_config

    def test_invalid_batch_size_rejected(self, store):
        with pytest.raises(ValueError):
            BulkOperationsService(store).resolve_config({"batch_size": 0})
