"""padmin metadata: show resolved ClassMetadata for a type."""

from __future__ import annotations

from typing import Optional

import typer

from polyadmin.cli import _exitcodes as ec
from polyadmin.cli._loader import require_models
from polyadmin.cli._output import metadata_to_dict, print_object, print_table
from polyadmin.cli._storage import open_service
from polyadmin.result import attempt


def metadata_cmd(
    type_name: str = typer.Argument(..., help="Type name"),
    models: Optional[str] = typer.Option(None, "--models", help="Python import path for models"),
    models_path: Optional[str] = typer.Option(
        None, "--models-path", help="Filesystem path to models"
    ),
) -> None:
    """Show properties, subtypes, and collections of a type."""
    from polyadmin.cli import state

    found = require_models(models, models_path)
    with open_service(list(found.values())) as service:
        resolved = ec.unwrap_or_exit(attempt(service.get_class_metadata, type_name))

    data = metadata_to_dict(resolved)
    if state.json_output:
        print_object(data, json_mode=True)
        return

    print(f"Type: {resolved.type_name}{' (abstract)' if resolved.abstract else ''}")
    if resolved.polymorphic_types:
        print(f"Subtypes: {', '.join(resolved.polymorphic_types)}")
    print()
    print_table(
        ["property", "type", "declared_by", "required", "references"],
        [
            [p["name"], p["type"], p["declaring_type"], p["required"], p["foreign_type"]]
            for p in data["properties"]
        ],
    )
    if data["collections"]:
        print()
        print_table(
            ["collection", "target", "kind", "foreign_property", "map_key"],
            [
                [c["name"], c["target"], c["kind"], c["foreign_property"], c["map_key"]]
                for c in data["collections"]
            ],
        )
