"""Explicit per-operation context threaded through accessor and service calls."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional
from uuid import uuid4


@dataclass(frozen=True)
class OperationContext:
    """
    Correlation id + operation name for log lines.

    Always passed as an argument; there is no ambient context.
    """

    operation: str
    correlation_id: str = field(default_factory=lambda: uuid4().hex[:12])

    @classmethod
    def ensure(cls, ctx: Optional["OperationContext"], operation: str) -> "OperationContext":
        """Return `ctx` unchanged, or a fresh context for `operation`."""
        return ctx if ctx is not None else cls(operation=operation)

    def child(self, operation: str) -> "OperationContext":
        """Same correlation id, narrower operation name."""
        return replace(self, operation=f"{self.operation}.{operation}")

    def __str__(self) -> str:
        return f"{self.correlation_id}:{self.operation}"
