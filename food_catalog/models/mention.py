"""Mention ORM model — append-only evidence attached to a connection."""

from sqlalchemy import (
    Column, Integer, Text, String, Enum,
    TIMESTAMP, ForeignKey, Index, UniqueConstraint, func, text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from food_catalog.database import Base
from food_catalog.models.entity import new_id
from food_catalog.schemas.enums import MentionSource


class Mention(Base):
    """
    One post or comment supporting a connection. Never edited after insert;
    re-ingesting the same source is skipped on (connection, source_type, source_id).
    """

    __tablename__ = "mentions"

    mention_id = Column(
        UUID(as_uuid=False),
        primary_key=True,
        default=new_id,
        server_default=text("gen_random_uuid()"),
    )
    connection_id = Column(
        UUID(as_uuid=False),
        ForeignKey(
            "connections.connection_id",
            ondelete="CASCADE",
            name="fk_mentions_connection",
        ),
        nullable=False,
    )

    source_type = Column(
        Enum(*[s.value for s in MentionSource], name="mention_source"),
        nullable=False,
    )
    source_id = Column(String(255), nullable=False)
    source_url = Column(String(500), nullable=False)
    subreddit = Column(String(100), nullable=False)   # community label
    content_excerpt = Column(Text, nullable=False)
    author = Column(String(255), nullable=True)
    upvotes = Column(Integer, nullable=False, server_default="0")

    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    processed_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "connection_id", "source_type", "source_id",
            name="uq_mentions_connection_source",
        ),
        Index("idx_mentions_subreddit_upvotes", "subreddit", upvotes.desc()),
    )

    # Relationships
    connection = relationship("Connection", back_populates="mentions")
