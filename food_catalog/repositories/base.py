"""
Building blocks shared by the accessors.

Accessors compose these helpers around a store delegate instead of
inheriting from a generic repository class.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy.exc import SQLAlchemyError

from food_catalog.context import OperationContext
from food_catalog.exceptions import RepositoryError, translate_store_error
from food_catalog.store import TableDelegate


@asynccontextmanager
async def tracked(
    logger: logging.Logger,
    ctx: OperationContext,
    entity_name: str,
    operation: str,
    **details: Any,
) -> AsyncIterator[None]:
    """
    Log start, duration, and failure of one accessor call.
    Anything untyped that reaches here is translated before re-raising.
    """
    start = time.perf_counter()
    logger.debug("[%s] %s.%s %s", ctx, entity_name, operation, details or "")
    try:
        yield
    except RepositoryError as exc:
        logger.error(
            "[%s] %s.%s failed after %.1fms: %s",
            ctx, entity_name, operation, (time.perf_counter() - start) * 1000, exc,
        )
        raise
    except SQLAlchemyError as exc:
        logger.error("[%s] %s.%s failed: %s", ctx, entity_name, operation, exc)
        raise translate_store_error(exc, operation, entity_name) from exc
    logger.debug(
        "[%s] %s.%s completed in %.1fms",
        ctx, entity_name, operation, (time.perf_counter() - start) * 1000,
    )


async def find_by_id(delegate: TableDelegate, entity_id: str) -> Optional[Any]:
    """Primary-key lookup through any delegate."""
    return await delegate.find_unique({delegate.primary_key: entity_id})


def merge_unique(existing: Optional[list[Any]], incoming: Optional[list[Any]]) -> list[Any]:
    """Order-preserving union of two id lists."""
    return list(dict.fromkeys(list(existing or []) + list(incoming or [])))
