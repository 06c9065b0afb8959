"""Mention accessor — read side of the append-only evidence table."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from food_catalog.context import OperationContext
from food_catalog.models import Mention
from food_catalog.repositories.base import tracked
from food_catalog.store import CatalogStore

logger = logging.getLogger(__name__)


@dataclass
class MentionStatistics:
    total_mentions: int = 0
    total_upvotes: int = 0
    unique_communities: int = 0
    average_upvotes: float = 0.0
    recent_mentions: int = 0
    last_mentioned_at: Optional[datetime] = None


def summarize_mentions(
    mentions: list[Mention], *, now: datetime, recent_days: int
) -> MentionStatistics:
    if not mentions:
        return MentionStatistics()
    cutoff = now - timedelta(days=recent_days)
    total_upvotes = sum(m.upvotes or 0 for m in mentions)
    return MentionStatistics(
        total_mentions=len(mentions),
        total_upvotes=total_upvotes,
        unique_communities=len({m.subreddit.lower() for m in mentions}),
        average_upvotes=total_upvotes / len(mentions),
        recent_mentions=sum(1 for m in mentions if m.created_at >= cutoff),
        last_mentioned_at=max(m.created_at for m in mentions),
    )


class MentionRepository:
    entity_name = "Mention"

    def __init__(self, store: Optional[CatalogStore] = None) -> None:
        self._store = store or CatalogStore()

    async def find_by_connection(
        self,
        connection_id: str,
        *,
        take: Optional[int] = None,
        ctx: Optional[OperationContext] = None,
    ) -> list[Mention]:
        """Mentions of one connection, newest first."""
        ctx = OperationContext.ensure(ctx, "find_by_connection")
        async with tracked(logger, ctx, self.entity_name, "find_by_connection", connection_id=connection_id):
            return await self._store.mentions.find_many(
                {"connection_id": connection_id}, order_by=["-created_at"], take=take
            )

    async def connection_statistics(
        self,
        connection_id: str,
        *,
        recent_days: int = 30,
        now: Optional[datetime] = None,
        ctx: Optional[OperationContext] = None,
    ) -> MentionStatistics:
        mentions = await self.find_by_connection(connection_id, ctx=ctx)
        return summarize_mentions(
            mentions, now=now or datetime.now(timezone.utc), recent_days=recent_days
        )
