"""Custom-criteria persistence handlers.

Custom criteria tokens on a request are opaque to the admin service; the
repository dispatches them to handlers registered for the token.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from polyadmin.filters import FilterExpression

HANDLER_OPERATIONS = ("fetch", "add", "update", "remove")


@dataclass
class HandlerMeta:
    """Metadata stored on decorated handler functions."""

    token: str
    operations: tuple[str, ...]
    type_names: tuple[str, ...] = ()  # empty: every type
    priority: int = 100


@dataclass
class HandlerContext:
    """Context object provided to persistence handlers.

    Write handlers may edit ``values`` in place; fetch handlers may narrow the
    query with ``add_filter``.
    """

    operation: str
    type_name: str
    record_id: str | None
    values: dict[str, Any]
    custom_criteria: tuple[str, ...]
    filters: list[FilterExpression] = field(default_factory=list)

    def add_filter(self, expr: FilterExpression) -> None:
        self.filters.append(expr)


def persistence_handler(
    token: str,
    *,
    operations: Iterable[str] = HANDLER_OPERATIONS,
    types: Iterable[str] = (),
    priority: int = 100,
) -> Callable[[Callable[[HandlerContext], Any]], Callable[[HandlerContext], Any]]:
    """Decorator marking a function as the handler for a custom criteria token."""
    ops = tuple(operations)
    unknown = [op for op in ops if op not in HANDLER_OPERATIONS]
    if unknown:
        raise ValueError(f"Unknown handler operations: {unknown}")

    def decorator(func: Callable[[HandlerContext], Any]) -> Callable[[HandlerContext], Any]:
        func._polyadmin_handler = HandlerMeta(  # type: ignore[attr-defined]
            token=token,
            operations=ops,
            type_names=tuple(types),
            priority=priority,
        )
        return func

    return decorator


def handler_meta(func: Callable[..., Any]) -> HandlerMeta:
    meta = getattr(func, "_polyadmin_handler", None)
    if not isinstance(meta, HandlerMeta):
        raise TypeError(f"{func!r} is not decorated with @persistence_handler")
    return meta
