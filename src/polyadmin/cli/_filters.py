"""CLI filter and sort parsing into FilterAndSortCriteria."""

from __future__ import annotations

import json
from typing import Any

from polyadmin.dto import FilterAndSortCriteria, SortDirection

_OPERATORS = ("eq", "ne", "gt", "gte", "lt", "lte", "like", "in", "is_null", "not_null")


def group_filter_args(filter_args: list[str] | None) -> list[tuple[str, str, str]]:
    """Group repeated --filter values into (FIELD, OP, VALUE_JSON) triples.

    Accepts three separate --filter values per criterion, or one
    space-separated "FIELD OP VALUE_JSON" value each.
    """
    if not filter_args:
        return []
    if len(filter_args) % 3 == 0 and all(" " not in a for a in filter_args[1::3]):
        return [
            (filter_args[i], filter_args[i + 1], filter_args[i + 2])
            for i in range(0, len(filter_args), 3)
        ]
    triples: list[tuple[str, str, str]] = []
    for arg in filter_args:
        parts = arg.split(None, 2)
        if len(parts) == 2 and parts[1] in ("is_null", "not_null"):
            parts.append("null")
        if len(parts) != 3:
            raise ValueError(f"Invalid filter (expected 'FIELD OP VALUE_JSON'): {arg}")
        triples.append((parts[0], parts[1], parts[2]))
    return triples


def parse_cli_filters(triples: list[tuple[str, str, str]]) -> list[FilterAndSortCriteria]:
    """One criterion per triple; list values of ``in`` and ``eq`` are OR'd."""
    criteria: list[FilterAndSortCriteria] = []
    for field_name, op, value_json in triples:
        if op not in _OPERATORS:
            raise ValueError(
                f"Unknown filter operator '{op}'. Valid operators: {', '.join(_OPERATORS)}"
            )
        if op in ("is_null", "not_null"):
            criteria.append(FilterAndSortCriteria.of(field_name, operator=op))
            continue
        try:
            value: Any = json.loads(value_json)
        except json.JSONDecodeError as e:
            raise ValueError(
                f"Filter value for '{field_name}' is not valid JSON: {value_json}"
            ) from e
        values = tuple(value) if isinstance(value, list) else (value,)
        criteria.append(FilterAndSortCriteria.of(field_name, *values, operator=op))
    return criteria


def parse_sort(sort_args: list[str] | None) -> list[FilterAndSortCriteria]:
    """Parse FIELD or FIELD:desc sort arguments, in order."""
    criteria: list[FilterAndSortCriteria] = []
    for arg in sort_args or []:
        field_name, _, direction = arg.partition(":")
        try:
            criteria.append(FilterAndSortCriteria.sort_by(field_name, direction or "asc"))
        except ValueError as e:
            raise ValueError(f"Invalid sort direction in '{arg}' (use asc or desc)") from e
    return criteria
