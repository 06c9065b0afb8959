"""
Catalog store — the persistence collaborator used by every accessor.

Wraps the async SQLAlchemy session in one delegate per table exposing the
same small operation set (create, create_many, upsert, find_unique,
find_many, update, count). A store is either:

  unbound — every call opens its own session and commits on success;
  bound   — calls run on the session of the surrounding transaction
            (see `run_in_transaction`) and commit with it.

Filters are plain dicts. Keys are column names, optionally suffixed with a
lookup, e.g. {"type": "dish_attribute", "name__iexact": "Italian"}:

  __iexact     case-insensitive equality
  __icontains  case-insensitive substring
  __has        array column contains the value
  __in         value is one of the given values
  __gte/__lte  range bounds

`any_of` takes a list of such dicts OR-ed together. `order_by` takes
column names, prefixed with "-" for descending (NULLs last).

SQLAlchemy errors never escape: they are translated to the repository
exception taxonomy before being raised.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

from sqlalchemy import and_, func, or_, select, update as sa_update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from food_catalog.database import AsyncSessionLocal
from food_catalog.exceptions import (
    CatalogValidationError,
    EntityNotFoundError,
    RepositoryError,
    translate_store_error,
)
from food_catalog.models import Connection, Entity, Mention

logger = logging.getLogger(__name__)

T = TypeVar("T")

Where = Optional[dict[str, Any]]


# ── Filter helpers ───────────────────────────────────────────────────────────


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _column(model: Any, name: str) -> Any:
    if name not in model.__table__.c:
        raise CatalogValidationError(model.__name__, [f"unknown column '{name}'"])
    return getattr(model, name)


def build_clause(model: Any, key: str, value: Any) -> Any:
    """Translate one `column[__lookup]: value` filter entry to a SQL clause."""
    name, _, lookup = key.partition("__")
    column = _column(model, name)

    if not lookup:
        return column.is_(None) if value is None else column == value
    if lookup == "iexact":
        return func.lower(column) == str(value).lower()
    if lookup == "icontains":
        return column.ilike(f"%{_escape_like(str(value))}%", escape="\\")
    if lookup == "has":
        return column.any(value)
    if lookup == "in":
        return column.in_(list(value))
    if lookup == "gte":
        return column >= value
    if lookup == "lte":
        return column <= value
    raise CatalogValidationError(
        model.__name__, [f"unsupported lookup '{lookup}' in filter key '{key}'"]
    )


def build_where(
    model: Any, where: Where = None, any_of: Optional[list[dict[str, Any]]] = None
) -> list[Any]:
    """Build the list of WHERE clauses for a filter dict plus an OR group."""
    clauses = [build_clause(model, k, v) for k, v in (where or {}).items()]
    if any_of:
        clauses.append(
            or_(*[and_(*[build_clause(model, k, v) for k, v in group.items()])
                  for group in any_of])
        )
    return clauses


def build_order_by(model: Any, order_by: Optional[list[str]]) -> list[Any]:
    clauses = []
    for key in order_by or []:
        if key.startswith("-"):
            clauses.append(_column(model, key[1:]).desc().nullslast())
        else:
            clauses.append(_column(model, key).asc())
    return clauses


# ── Table delegate ───────────────────────────────────────────────────────────


class TableDelegate:
    """Typed read/write operations for one table, parameterised by model and key."""

    def __init__(self, store: "CatalogStore", model: Any, entity_name: str, primary_key: str) -> None:
        self._store = store
        self.model = model
        self.entity_name = entity_name
        self.primary_key = primary_key

    async def _run(self, operation: str, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            return await self._store.with_session(fn)
        except RepositoryError:
            raise
        except SQLAlchemyError as exc:
            raise translate_store_error(exc, operation, self.entity_name) from exc

    async def create(self, data: dict[str, Any]) -> Any:
        stmt = pg_insert(self.model).values(**data).returning(self.model)

        async def _do(session: AsyncSession) -> Any:
            return (await session.scalars(stmt)).one()

        return await self._run("create", _do)

    async def create_many(self, rows: list[dict[str, Any]], skip_duplicates: bool = True) -> int:
        """Multi-row insert. Returns the number of rows actually inserted."""
        if not rows:
            return 0
        stmt = pg_insert(self.model).values(rows)
        if skip_duplicates:
            stmt = stmt.on_conflict_do_nothing()
        stmt = stmt.returning(_column(self.model, self.primary_key))

        async def _do(session: AsyncSession) -> int:
            result = await session.execute(stmt)
            return len(result.all())

        return await self._run("create_many", _do)

    async def find_unique(self, where: dict[str, Any]) -> Any:
        stmt = select(self.model).where(*build_where(self.model, where)).limit(1)

        async def _do(session: AsyncSession) -> Any:
            return (await session.scalars(stmt)).first()

        return await self._run("find_unique", _do)

    async def find_many(
        self,
        where: Where = None,
        *,
        any_of: Optional[list[dict[str, Any]]] = None,
        order_by: Optional[list[str]] = None,
        skip: Optional[int] = None,
        take: Optional[int] = None,
    ) -> list[Any]:
        stmt = select(self.model).where(*build_where(self.model, where, any_of))
        stmt = stmt.order_by(*build_order_by(self.model, order_by))
        if skip:
            stmt = stmt.offset(skip)
        if take:
            stmt = stmt.limit(take)

        async def _do(session: AsyncSession) -> list[Any]:
            return list((await session.scalars(stmt)).all())

        return await self._run("find_many", _do)

    async def count(self, where: Where = None, *, any_of: Optional[list[dict[str, Any]]] = None) -> int:
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(*build_where(self.model, where, any_of))
        )

        async def _do(session: AsyncSession) -> int:
            return int((await session.execute(stmt)).scalar_one())

        return await self._run("count", _do)

    async def update(self, where: dict[str, Any], data: dict[str, Any]) -> Any:
        stmt = (
            sa_update(self.model)
            .where(*build_where(self.model, where))
            .values(**data)
            .returning(self.model)
            .execution_options(synchronize_session=False)
        )

        async def _do(session: AsyncSession) -> Any:
            row = (await session.scalars(stmt)).first()
            if row is None:
                raise EntityNotFoundError(self.entity_name, where)
            return row

        return await self._run("update", _do)

    async def upsert(
        self, where: dict[str, Any], create: dict[str, Any], update: dict[str, Any]
    ) -> Any:
        """Update the row matching `where`, or insert `create` when none exists."""

        async def _do(session: AsyncSession) -> Any:
            existing = (
                await session.scalars(
                    select(self.model.__table__.c[self.primary_key])
                    .where(*build_where(self.model, where))
                    .limit(1)
                )
            ).first()
            if existing is None:
                stmt = pg_insert(self.model).values(**create).returning(self.model)
            else:
                pk = _column(self.model, self.primary_key)
                stmt = (
                    sa_update(self.model)
                    .where(pk == existing)
                    .values(**update)
                    .returning(self.model)
                    .execution_options(synchronize_session=False)
                )
            return (await session.scalars(stmt)).one()

        return await self._run("upsert", _do)


# ── Store ────────────────────────────────────────────────────────────────────


class CatalogStore:
    """Entry point to the three catalog tables, optionally bound to a transaction."""

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
    ) -> None:
        self._session_factory = session_factory
        self._session = session
        self.entities = TableDelegate(self, Entity, "Entity", "entity_id")
        self.connections = TableDelegate(self, Connection, "Connection", "connection_id")
        self.mentions = TableDelegate(self, Mention, "Mention", "mention_id")

    @property
    def in_transaction(self) -> bool:
        return self._session is not None

    async def with_session(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run `fn` on the bound session, or on a fresh auto-committing one."""
        if self._session is not None:
            return await fn(self._session)
        async with self._session_factory() as session:
            try:
                result = await fn(session)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            return result

    async def run_in_transaction(self, fn: Callable[["CatalogStore"], Awaitable[T]]) -> T:
        """
        Run `fn` with a store bound to a new transaction.

        Commits when `fn` returns, rolls back when it raises. A store that is
        already bound joins its current transaction instead of nesting one.
        """
        if self._session is not None:
            return await fn(self)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    return await fn(CatalogStore(self._session_factory, session))
        except RepositoryError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Transaction aborted: %s", exc)
            raise translate_store_error(exc, "transaction", "Transaction") from exc

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        """Nested transaction inside a bound store; a no-op when unbound."""
        if self._session is None:
            yield
            return
        async with self._session.begin_nested():
            yield
