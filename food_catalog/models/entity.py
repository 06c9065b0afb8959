"""Entity ORM model — the unified catalog row for every entity kind."""

from uuid import uuid4

from sqlalchemy import (
    Column, Text, String, Numeric, Double, Enum,
    ARRAY, TIMESTAMP, CheckConstraint, Index, UniqueConstraint, func, text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from food_catalog.database import Base
from food_catalog.schemas.enums import EntityType


def new_id() -> str:
    return str(uuid4())


class Entity(Base):
    """
    A restaurant, a dish_or_category, or a scoped attribute.
    Restaurant-only columns stay NULL (or empty) for the other three kinds.
    """

    __tablename__ = "entities"

    entity_id = Column(
        UUID(as_uuid=False),
        primary_key=True,
        default=new_id,
        server_default=text("gen_random_uuid()"),
    )
    name = Column(String(255), nullable=False)
    type = Column(
        Enum(*[t.value for t in EntityType], name="entity_type"),
        nullable=False,
    )
    aliases = Column(ARRAY(Text), nullable=False, server_default="{}")

    # Restaurant-only
    restaurant_attributes = Column(
        ARRAY(UUID(as_uuid=False)), nullable=False, server_default="{}"
    )
    restaurant_quality_score = Column(Numeric(10, 4), nullable=True)
    latitude = Column(Double, nullable=True)
    longitude = Column(Double, nullable=True)
    address = Column(String(500), nullable=True)
    google_place_id = Column(String(255), nullable=True)
    restaurant_metadata = Column(JSONB, nullable=False, server_default="{}")

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
        UniqueConstraint("name", "type", name="uq_entities_name_type"),
        UniqueConstraint("google_place_id", name="uq_entities_google_place_id"),
        # Same word may exist once per attribute scope, whatever its casing
        Index(
            "uq_entities_attribute_name_ci",
            "type",
            func.lower(name),
            unique=True,
            postgresql_where=text(
                "type IN ('dish_attribute', 'restaurant_attribute')"
            ),
        ),
        Index("idx_entities_type_score", "type", restaurant_quality_score.desc()),
        Index("idx_entities_aliases", "aliases", postgresql_using="gin"),
        Index("idx_entities_location", "longitude", "latitude"),
        CheckConstraint(
            "(latitude IS NULL AND longitude IS NULL) OR "
            "(latitude BETWEEN -90 AND 90 AND longitude BETWEEN -180 AND 180)",
            name="check_location_consistency",
        ),
        CheckConstraint(
            "type = 'restaurant' OR (latitude IS NULL AND longitude IS NULL "
            "AND address IS NULL AND google_place_id IS NULL)",
            name="check_restaurant_specific_fields",
        ),
        CheckConstraint(
            "restaurant_quality_score IS NULL OR "
            "(restaurant_quality_score >= 0 AND restaurant_quality_score <= 100)",
            name="check_restaurant_quality_score_range",
        ),
    )

    # Relationships
    menu_connections = relationship(
        "Connection",
        foreign_keys="Connection.dish_or_category_id",
        back_populates="dish",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    restaurant_connections = relationship(
        "Connection",
        foreign_keys="Connection.restaurant_id",
        back_populates="restaurant",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Entity {self.type}:{self.name} ({self.entity_id})>"
