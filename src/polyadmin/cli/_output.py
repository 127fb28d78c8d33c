"""Output formatting helpers for the CLI."""

from __future__ import annotations

import json
import sys
from typing import Any

from polyadmin.dto import ClassMetadata, Entity


def entity_to_dict(entity: Entity) -> dict[str, Any]:
    return {
        "id": entity.id,
        "type": entity.type_name,
        "version": entity.version,
        **entity.to_dict(),
    }


def metadata_to_dict(metadata: ClassMetadata) -> dict[str, Any]:
    return {
        "type": metadata.type_name,
        "abstract": metadata.abstract,
        "primary_key": metadata.primary_key,
        "polymorphic_types": list(metadata.polymorphic_types),
        "properties": [
            {
                "name": p.name,
                "type": p.field_type,
                "declaring_type": p.declaring_type,
                "required": p.required,
                "foreign_type": p.foreign_type,
                "owned": p.owned,
            }
            for p in metadata.properties
        ],
        "collections": [
            {
                "name": c.name,
                "target": c.target_type,
                "kind": c.kind,
                "foreign_property": c.foreign_property,
                "map_key": c.map_key,
            }
            for c in metadata.collections
        ],
        "owned_references": [
            {"path": r.path, "target": r.target_type, "members": sorted(r.owned_members)}
            for r in metadata.owned_references
        ],
    }


def print_table(headers: list[str], rows: list[list[Any]], *, json_mode: bool = False) -> None:
    """Print data as a table (text) or JSON array."""
    if json_mode:
        data = [dict(zip(headers, row)) for row in rows]
        print(json.dumps(data, indent=2, default=str))
        return

    if not rows:
        return

    widths = [len(h) for h in headers]
    str_rows = [["" if v is None else str(v) for v in row] for row in rows]
    for row in str_rows:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], len(val))

    print("  ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
    print("  ".join("-" * w for w in widths))
    for row in str_rows:
        print("  ".join(val.ljust(widths[i]) for i, val in enumerate(row)))


def print_entities(entities: list[Entity], *, json_mode: bool = False) -> None:
    """Print entities as one table whose columns are the union of their properties."""
    if json_mode:
        print(json.dumps([entity_to_dict(e) for e in entities], indent=2, default=str))
        return
    headers = ["id", "type"]
    for entity in entities:
        headers.extend(name for name in entity.properties if name not in headers)
    print_table(
        headers,
        [[entity_to_dict(e).get(h) for h in headers] for e in entities],
    )


def print_object(data: dict[str, Any], *, json_mode: bool = False) -> None:
    """Print a single object as JSON or key-value pairs."""
    if json_mode:
        print(json.dumps(data, indent=2, default=str))
        return
    for k, v in data.items():
        print(f"{k}: {v}")


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {msg}", file=sys.stderr)
