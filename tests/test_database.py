"""Tests for schema setup in food_catalog.database."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from food_catalog.database import create_schema
from food_catalog.models import Base


class RecordingConnection:
    """Answers the table-name inspection and records DDL calls."""

    def __init__(self, existing):
        self.existing = existing
        self.ddl = []

    async def run_sync(self, fn):
        name = getattr(fn, "__name__", "")
        if name in ("create_all", "drop_all"):
            self.ddl.append(name)
            return None
        return list(self.existing)


def opened(value):
    @asynccontextmanager
    async def _open():
        yield value

    return _open


@pytest.fixture
def schema_env():
    conn = RecordingConnection(existing=["entities"])
    session = MagicMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    engine = MagicMock()
    engine.begin = opened(conn)
    with patch("food_catalog.database.engine", engine), patch(
        "food_catalog.database.AsyncSessionLocal", opened(session)
    ):
        yield conn, session


@pytest.mark.asyncio
async def test_creates_only_missing_tables(schema_env):
    conn, session = schema_env

    created = await create_schema(Base.metadata)

    assert set(created) == {"connections", "mentions"}
    assert conn.ddl == ["create_all"]
    (statement,), _ = session.execute.call_args
    assert "pg_trgm" in str(statement)
    session.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_drop_existing_rebuilds_everything(schema_env):
    conn, _ = schema_env
    conn.existing = []

    created = await create_schema(Base.metadata, drop_existing=True)

    assert conn.ddl == ["drop_all", "create_all"]
    assert set(created) == {"entities", "connections", "mentions"}
