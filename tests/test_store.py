"""Tests for the store's filter builder, transaction scoping, and error translation."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError, OperationalError

from food_catalog.exceptions import (
    CatalogValidationError,
    DatabaseOperationError,
    EntityAlreadyExistsError,
    EntityNotFoundError,
)
from food_catalog.models import Connection, Entity
from food_catalog.store import CatalogStore, build_clause, build_order_by, build_where


def sql(clause) -> str:
    return str(clause.compile(dialect=postgresql.dialect()))


class TestBuildClause:
    def test_equality(self):
        assert sql(build_clause(Entity, "type", "restaurant")).startswith("entities.type = ")

    def test_none_is_null_check(self):
        assert "IS NULL" in sql(build_clause(Entity, "address", None))

    def test_iexact_lowers_column(self):
        assert "lower(entities.name)" in sql(build_clause(Entity, "name__iexact", "Italian"))

    def test_icontains_uses_ilike(self):
        assert "ILIKE" in sql(build_clause(Entity, "name__icontains", "pizza"))

    def test_has_is_array_membership(self):
        assert "ANY (connections.categories)" in sql(build_clause(Connection, "categories__has", "c-1"))

    def test_in_and_ranges(self):
        assert " IN " in sql(build_clause(Entity, "name__in", ["a", "b"]))
        assert ">=" in sql(build_clause(Entity, "latitude__gte", 1.0))
        assert "<=" in sql(build_clause(Entity, "latitude__lte", 2.0))

    def test_unknown_column_rejected(self):
        with pytest.raises(CatalogValidationError, match="unknown column 'colour'"):
            build_clause(Entity, "colour", "red")

    def test_unknown_lookup_rejected(self):
        with pytest.raises(CatalogValidationError, match="unsupported lookup"):
            build_clause(Entity, "name__startswith", "a")


class TestBuildWhere:
    def test_any_of_becomes_or_group(self):
        clauses = build_where(
            Entity,
            {"type": "dish_or_category"},
            any_of=[{"name__icontains": "pie"}, {"aliases__has": "pie"}],
        )
        assert len(clauses) == 2
        assert " OR " in sql(clauses[1])

    def test_descending_order_puts_nulls_last(self):
        clauses = build_order_by(Entity, ["name", "-restaurant_quality_score"])
        assert sql(clauses[0]) == "entities.name ASC"
        assert sql(clauses[1]) == "entities.restaurant_quality_score DESC NULLS LAST"


class TestCatalogStore:
    @pytest.mark.asyncio
    async def test_bound_store_joins_current_transaction(self):
        store = CatalogStore(session=MagicMock())
        fn = AsyncMock(return_value="done")

        assert await store.run_in_transaction(fn) == "done"
        fn.assert_awaited_once_with(store)

    @pytest.mark.asyncio
    async def test_savepoint_is_noop_when_unbound(self):
        store = CatalogStore()
        assert not store.in_transaction
        async with store.savepoint():
            pass

    @pytest.mark.asyncio
    async def test_create_translates_unique_violation(self):
        orig = Exception("duplicate key")
        orig.sqlstate = "23505"
        orig.constraint_name = "uq_entities_name_type"
        session = MagicMock()
        session.scalars = AsyncMock(side_effect=IntegrityError("INSERT", {}, orig))
        store = CatalogStore(session=session)

        with pytest.raises(EntityAlreadyExistsError):
            await store.entities.create({"name": "Pizza", "type": "dish_or_category"})

    @pytest.mark.asyncio
    async def test_update_without_match_is_not_found(self):
        result = MagicMock()
        result.first.return_value = None
        session = MagicMock()
        session.scalars = AsyncMock(return_value=result)
        store = CatalogStore(session=session)

        with pytest.raises(EntityNotFoundError):
            await store.entities.update({"entity_id": "missing"}, {"name": "X"})

    @pytest.mark.asyncio
    async def test_unrecognised_failure_is_database_error(self):
        session = MagicMock()
        session.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("gone")))
        store = CatalogStore(session=session)

        with pytest.raises(DatabaseOperationError) as info:
            await store.connections.count({"is_menu_item": True})
        assert info.value.operation == "count"

    @pytest.mark.asyncio
    async def test_upsert_with_unknown_filter_column_is_validation_error(self):
        session = MagicMock()
        session.scalars = AsyncMock()
        store = CatalogStore(session=session)

        with pytest.raises(CatalogValidationError, match="unknown column 'entityId'"):
            await store.entities.upsert(
                {"entityId": "x"}, {"name": "Pizza", "type": "dish_or_category"}, {"name": "Pizza"}
            )
        session.scalars.assert_not_awaited()
