"""Filter expression types and criteria compilation."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from polyadmin.dto import FilterAndSortCriteria, SortDirection

_SEGMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Criterion operator tokens -> expression operators
OPERATORS: dict[str, str] = {
    "eq": "==",
    "ne": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "like": "LIKE",
    "in": "IN",
    "is_null": "IS_NULL",
    "not_null": "IS_NOT_NULL",
}


def validate_field_name(name: str) -> None:
    """Reject names that cannot be safely embedded in a JSON path."""
    if not _SEGMENT_RE.match(name):
        raise ValueError(f"Invalid field name '{name}': must match [A-Za-z_][A-Za-z0-9_]*")


class FilterExpression:
    """Base class for filter expressions."""

    def __and__(self, other: FilterExpression) -> LogicalExpression:
        return LogicalExpression(op="AND", children=[self, other])

    def __or__(self, other: FilterExpression) -> LogicalExpression:
        return LogicalExpression(op="OR", children=[self, other])

    def __invert__(self) -> LogicalExpression:
        return LogicalExpression(op="NOT", children=[self])


@dataclass
class ComparisonExpression(FilterExpression):
    """A comparison between a record field and a value.

    field_path uses "$.name" for direct field access.
    """

    field_path: str
    op: str  # "==", "!=", ">", ">=", "<", "<=", "LIKE", "IN", "IS_NULL", "IS_NOT_NULL"
    value: Any = None

    def __hash__(self) -> int:
        v = self.value
        if isinstance(v, list):
            v = tuple(v)
        return hash((self.field_path, self.op, v))

    def __eq__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, ComparisonExpression):
            return NotImplemented
        return (
            self.field_path == other.field_path
            and self.op == other.op
            and self.value == other.value
        )


@dataclass
class LogicalExpression(FilterExpression):
    """A logical combination of filter expressions."""

    op: str  # "AND", "OR", "NOT"
    children: list[FilterExpression] = field(default_factory=list)


def field_equals(name: str, value: Any) -> ComparisonExpression:
    validate_field_name(name)
    return ComparisonExpression(f"$.{name}", "==", value)


def and_all(exprs: Sequence[FilterExpression | None]) -> FilterExpression | None:
    present = [e for e in exprs if e is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return LogicalExpression(op="AND", children=list(present))


def _criterion_expression(criterion: FilterAndSortCriteria) -> FilterExpression | None:
    validate_field_name(criterion.field)
    op = OPERATORS.get(criterion.operator)
    if op is None:
        raise ValueError(
            f"Unknown filter operator '{criterion.operator}'. "
            f"Valid operators: {', '.join(sorted(OPERATORS))}"
        )
    path = f"$.{criterion.field}"
    if op in ("IS_NULL", "IS_NOT_NULL"):
        return ComparisonExpression(path, op)
    if not criterion.values:
        return None
    if op == "IN":
        return ComparisonExpression(path, "IN", list(criterion.values))
    if op == "LIKE":
        alternatives: list[FilterExpression] = [
            ComparisonExpression(path, "LIKE", f"%{v}%") for v in criterion.values
        ]
    else:
        alternatives = [ComparisonExpression(path, op, v) for v in criterion.values]
    if len(alternatives) == 1:
        return alternatives[0]
    return LogicalExpression(op="OR", children=alternatives)


def criteria_to_filter(criteria: Sequence[FilterAndSortCriteria]) -> FilterExpression | None:
    """AND the criteria together; each criterion ORs its own values."""
    return and_all([_criterion_expression(c) for c in criteria])


def criteria_to_order(criteria: Sequence[FilterAndSortCriteria]) -> list[tuple[str, bool]]:
    """(field, descending) pairs in criteria order."""
    order: list[tuple[str, bool]] = []
    for c in criteria:
        if c.sort is None:
            continue
        validate_field_name(c.field)
        order.append((c.field, c.sort is SortDirection.DESCENDING))
    return order
