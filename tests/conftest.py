"""Shared fixtures: a fake catalog store whose delegates are AsyncMocks."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, Optional
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from food_catalog.schemas.enums import ActivityLevel, EntityType


def _created(data: dict[str, Any]) -> SimpleNamespace:
    return SimpleNamespace(**data)


def _updated(where: dict[str, Any], data: dict[str, Any]) -> SimpleNamespace:
    return SimpleNamespace(**{**where, **data})


def _upserted(where: dict[str, Any], create: dict[str, Any], update: dict[str, Any]) -> SimpleNamespace:
    return SimpleNamespace(**create)


class FakeDelegate:
    """Delegate contract of `TableDelegate`; every operation is an AsyncMock."""

    def __init__(self, entity_name: str, primary_key: str) -> None:
        self.entity_name = entity_name
        self.primary_key = primary_key
        self.create = AsyncMock(side_effect=_created)
        self.create_many = AsyncMock(side_effect=lambda rows, skip_duplicates=True: len(rows))
        self.find_unique = AsyncMock(return_value=None)
        self.find_many = AsyncMock(return_value=[])
        self.count = AsyncMock(return_value=0)
        self.update = AsyncMock(side_effect=_updated)
        self.upsert = AsyncMock(side_effect=_upserted)

    @property
    def store_calls(self) -> int:
        return sum(
            m.await_count
            for m in (self.create, self.create_many, self.find_unique, self.find_many,
                      self.count, self.update, self.upsert)
        )


class FakeStore:
    """
    Stand-in for CatalogStore. `run_in_transaction` calls straight through
    and counts; set `fail_transaction` to make it raise instead.
    """

    def __init__(self) -> None:
        self.entities = FakeDelegate("Entity", "entity_id")
        self.connections = FakeDelegate("Connection", "connection_id")
        self.mentions = FakeDelegate("Mention", "mention_id")
        self.transactions = 0
        self.savepoints = 0
        self.fail_transaction: Optional[BaseException] = None
        self._open_transactions = 0

    @property
    def in_transaction(self) -> bool:
        return self._open_transactions > 0

    @property
    def store_calls(self) -> int:
        return self.entities.store_calls + self.connections.store_calls + self.mentions.store_calls

    async def run_in_transaction(self, fn):
        self.transactions += 1
        if self.fail_transaction is not None:
            raise self.fail_transaction
        self._open_transactions += 1
        try:
            return await fn(self)
        finally:
            self._open_transactions -= 1

    @asynccontextmanager
    async def savepoint(self):
        self.savepoints += 1
        yield


# ── Row factories ────────────────────────────────────────────────────────────


def make_entity(kind: EntityType, name: str, entity_id: Optional[str] = None, **fields: Any) -> SimpleNamespace:
    row = {
        "entity_id": entity_id or str(uuid4()),
        "name": name,
        "type": kind.value,
        "aliases": [],
        "restaurant_attributes": [],
        "restaurant_quality_score": None,
        "latitude": None,
        "longitude": None,
        "address": None,
        "google_place_id": None,
        "restaurant_metadata": {},
    }
    row.update(fields)
    return SimpleNamespace(**row)


def make_connection(
    restaurant_id: str, dish_or_category_id: str, connection_id: Optional[str] = None, **fields: Any
) -> SimpleNamespace:
    row = {
        "connection_id": connection_id or str(uuid4()),
        "restaurant_id": restaurant_id,
        "dish_or_category_id": dish_or_category_id,
        "categories": [],
        "dish_attributes": [],
        "is_menu_item": True,
        "mention_count": 0,
        "total_upvotes": 0,
        "source_diversity": 0,
        "recent_mention_count": 0,
        "last_mentioned_at": None,
        "activity_level": ActivityLevel.NORMAL.value,
        "top_mentions": [],
        "dish_quality_score": 0,
    }
    row.update(fields)
    return SimpleNamespace(**row)


def make_mention(connection_id: str, created_at: datetime, upvotes: int = 0, subreddit: str = "food", **fields: Any) -> SimpleNamespace:
    row = {
        "mention_id": str(uuid4()),
        "connection_id": connection_id,
        "source_type": "comment",
        "source_id": str(uuid4()),
        "source_url": "https://reddit.com/r/food/x",
        "subreddit": subreddit,
        "content_excerpt": "so good",
        "author": None,
        "upvotes": upvotes,
        "created_at": created_at,
    }
    row.update(fields)
    return SimpleNamespace(**row)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
