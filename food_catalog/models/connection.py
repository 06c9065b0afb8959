"""Connection ORM model — one restaurant ↔ one dish_or_category pairing."""

from sqlalchemy import (
    Column, Integer, Boolean, Numeric, Enum,
    ARRAY, TIMESTAMP, CheckConstraint, ForeignKey, Index, UniqueConstraint,
    func, text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from food_catalog.database import Base
from food_catalog.models.entity import new_id
from food_catalog.schemas.enums import ActivityLevel

# Largest value Numeric(16, 4) holds, rounded down to a whole score
DISH_QUALITY_SCORE_MAX = 999_999_999_999.0


class Connection(Base):
    """
    Carries the usage flags (is_menu_item, categories) and the engagement
    metrics that the ranking features read. Deleted together with either
    of the two entities it relates.
    """

    __tablename__ = "connections"

    connection_id = Column(
        UUID(as_uuid=False),
        primary_key=True,
        default=new_id,
        server_default=text("gen_random_uuid()"),
    )
    restaurant_id = Column(
        UUID(as_uuid=False),
        ForeignKey(
            "entities.entity_id",
            ondelete="CASCADE",
            name="fk_connections_restaurant",
        ),
        nullable=False,
    )
    dish_or_category_id = Column(
        UUID(as_uuid=False),
        ForeignKey(
            "entities.entity_id",
            ondelete="CASCADE",
            name="fk_connections_dish_or_category",
        ),
        nullable=False,
    )

    # dish_or_category entity ids this pairing is classified under
    categories = Column(ARRAY(UUID(as_uuid=False)), nullable=False, server_default="{}")
    dish_attributes = Column(ARRAY(UUID(as_uuid=False)), nullable=False, server_default="{}")
    is_menu_item = Column(Boolean, nullable=False, server_default="true")

    # Engagement metrics
    mention_count = Column(Integer, nullable=False, server_default="0")
    total_upvotes = Column(Integer, nullable=False, server_default="0")
    source_diversity = Column(Integer, nullable=False, server_default="0")
    recent_mention_count = Column(Integer, nullable=False, server_default="0")
    last_mentioned_at = Column(TIMESTAMP(timezone=True), nullable=True)
    activity_level = Column(
        Enum(*[a.value for a in ActivityLevel], name="activity_level"),
        nullable=False,
        server_default=ActivityLevel.NORMAL.value,
    )
    top_mentions = Column(JSONB, nullable=False, server_default="[]")
    dish_quality_score = Column(Numeric(16, 4), nullable=False, server_default="0")

    last_updated = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    created_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "restaurant_id", "dish_or_category_id",
            name="uq_connections_restaurant_dish",
        ),
        Index("idx_connections_categories_gin", "categories", postgresql_using="gin"),
        Index("idx_connections_attributes_gin", "dish_attributes", postgresql_using="gin"),
        Index("idx_connections_dish_menu_item", "dish_or_category_id", "is_menu_item"),
        CheckConstraint("mention_count >= 0", name="check_mention_count_positive"),
        CheckConstraint("total_upvotes >= 0", name="check_total_upvotes_positive"),
        CheckConstraint("source_diversity >= 0", name="check_source_diversity_positive"),
        CheckConstraint(
            "recent_mention_count >= 0", name="check_recent_mention_count_positive"
        ),
    )

    # Relationships
    restaurant = relationship(
        "Entity", foreign_keys=[restaurant_id], back_populates="restaurant_connections"
    )
    dish = relationship(
        "Entity", foreign_keys=[dish_or_category_id], back_populates="menu_connections"
    )
    mentions = relationship(
        "Mention",
        back_populates="connection",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
