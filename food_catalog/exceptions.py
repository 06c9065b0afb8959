"""
Repository exception taxonomy and store-error translation.

Every failure that leaves the store layer is one of the classes below.
Translation keys on the PostgreSQL SQLSTATE carried by the driver error and
on the constraint names declared by the ORM models, so the same store
failure always maps to the same typed exception.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from sqlalchemy.exc import DBAPIError, NoResultFound, SQLAlchemyError

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
CHECK_VIOLATION = "23514"
NOT_NULL_VIOLATION = "23502"
# class 22: value too long, invalid text representation, numeric overflow, ...
DATA_EXCEPTION_CLASS = "22"

# constraint name -> offending field set
UNIQUE_CONSTRAINT_FIELDS: dict[str, list[str]] = {
    "uq_entities_name_type": ["name", "type"],
    "uq_entities_google_place_id": ["google_place_id"],
    "uq_entities_attribute_name_ci": ["name", "type"],
    "uq_connections_restaurant_dish": ["restaurant_id", "dish_or_category_id"],
    "uq_mentions_connection_source": ["connection_id", "source_type", "source_id"],
}

# constraint name -> (offending field, kind of row it should reference)
FOREIGN_KEY_FIELDS: dict[str, tuple[str, str]] = {
    "fk_connections_restaurant": ("restaurant_id", "restaurant"),
    "fk_connections_dish_or_category": ("dish_or_category_id", "dish_or_category"),
    "fk_mentions_connection": ("connection_id", "connection"),
}

_CREATE_OPERATIONS = {"create", "create_many"}


def _format_identifier(identifier: Any) -> str:
    if isinstance(identifier, str):
        return identifier
    try:
        return json.dumps(identifier, sort_keys=True, default=str)
    except TypeError:
        return str(identifier)


class RepositoryError(Exception):
    """Base class for every typed catalog store failure."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


class EntityNotFoundError(RepositoryError):
    """Referenced row absent at update/delete time."""

    def __init__(self, entity_type: str, identifier: Any) -> None:
        super().__init__(
            f"{entity_type} with identifier {_format_identifier(identifier)} not found",
            {"entity_type": entity_type, "identifier": identifier},
        )
        self.entity_type = entity_type
        self.identifier = identifier


class UniqueConstraintError(RepositoryError):
    """A write collided with a unique constraint."""

    def __init__(self, entity_type: str, fields: list[str]) -> None:
        super().__init__(
            f"Unique constraint violated for {entity_type} on fields: {', '.join(fields)}",
            {"entity_type": entity_type, "fields": fields},
        )
        self.entity_type = entity_type
        self.fields = fields


class EntityAlreadyExistsError(UniqueConstraintError):
    """Natural-key collision while creating a row."""

    def __init__(self, entity_type: str, fields: list[str]) -> None:
        super().__init__(entity_type, fields)
        self.message = (
            f"{entity_type} already exists (natural key: {', '.join(fields)})"
        )
        self.args = (self.message,)


class ForeignKeyConstraintError(RepositoryError):
    """A write referenced a row that does not exist."""

    def __init__(self, entity_type: str, field: str, referenced_kind: str) -> None:
        super().__init__(
            f"Foreign key constraint violated for {entity_type}: "
            f"{field} references non-existent {referenced_kind}",
            {"entity_type": entity_type, "field": field, "referenced_kind": referenced_kind},
        )
        self.entity_type = entity_type
        self.field = field
        self.referenced_kind = referenced_kind


class CatalogValidationError(RepositoryError):
    """
    Contract violation. Raised before any store call, or translated from a
    row the database rejects as invalid.
    """

    def __init__(
        self,
        entity_type: str,
        errors: list[str],
        missing_fields: Optional[list[str]] = None,
    ) -> None:
        super().__init__(
            f"Validation failed for {entity_type}: {', '.join(errors)}",
            {
                "entity_type": entity_type,
                "errors": errors,
                "missing_fields": missing_fields or [],
            },
        )
        self.entity_type = entity_type
        self.errors = errors
        self.missing_fields = missing_fields or []


class DatabaseOperationError(RepositoryError):
    """Unrecognised store failure. Keeps the original error as `cause`."""

    def __init__(self, operation: str, entity_type: str, cause: BaseException) -> None:
        super().__init__(
            f"Database {operation} operation failed for {entity_type}: {cause}",
            {"operation": operation, "entity_type": entity_type},
        )
        self.operation = operation
        self.entity_type = entity_type
        self.cause = cause


# ── Translation ──────────────────────────────────────────────────────────────


def _driver_errors(exc: SQLAlchemyError) -> list[Any]:
    """The DBAPI error plus the raw driver error the asyncpg adapter wraps."""
    orig = getattr(exc, "orig", None)
    if orig is None:
        return []
    errors = [orig]
    cause = getattr(orig, "__cause__", None)
    if cause is not None:
        errors.append(cause)
    return errors


def _first_attr(candidates: list[Any], *names: str) -> Optional[str]:
    for candidate in candidates:
        for name in names:
            value = getattr(candidate, name, None)
            if value:
                return str(value)
    return None


def translate_store_error(
    exc: BaseException, operation: str, entity_type: str
) -> RepositoryError:
    """Map a store failure to the typed taxonomy. Typed errors pass through."""
    if isinstance(exc, RepositoryError):
        return exc

    if isinstance(exc, NoResultFound):
        return EntityNotFoundError(entity_type, "unknown")

    if isinstance(exc, DBAPIError):
        drivers = _driver_errors(exc)
        sqlstate = _first_attr(drivers, "sqlstate", "pgcode") or ""
        constraint = _first_attr(drivers, "constraint_name")

        if sqlstate == UNIQUE_VIOLATION:
            fields = UNIQUE_CONSTRAINT_FIELDS.get(constraint or "", ["unknown"])
            if operation in _CREATE_OPERATIONS:
                return EntityAlreadyExistsError(entity_type, fields)
            return UniqueConstraintError(entity_type, fields)

        if sqlstate == FOREIGN_KEY_VIOLATION:
            field, referenced = FOREIGN_KEY_FIELDS.get(
                constraint or "",
                (_first_attr(drivers, "column_name") or "unknown", "referenced entity"),
            )
            return ForeignKeyConstraintError(entity_type, field, referenced)

        # Row-specific and permanent: the same values fail on every attempt
        if sqlstate in (CHECK_VIOLATION, NOT_NULL_VIOLATION) or sqlstate.startswith(
            DATA_EXCEPTION_CLASS
        ):
            target = constraint or _first_attr(drivers, "column_name") or "value"
            return CatalogValidationError(
                entity_type, [f"{target} rejected by the database (SQLSTATE {sqlstate})"]
            )

    return DatabaseOperationError(operation, entity_type, exc)
