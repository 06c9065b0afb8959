"""SQLAlchemy ORM models package."""

from food_catalog.database import Base
from food_catalog.models.entity import Entity
from food_catalog.models.connection import Connection
from food_catalog.models.mention import Mention

__all__ = ["Base", "Entity", "Connection", "Mention"]
