"""padmin collections: items of every declared collection of a record."""

from __future__ import annotations

from typing import Optional

import typer

from polyadmin.cli import _exitcodes as ec
from polyadmin.cli._loader import require_models
from polyadmin.cli._output import entity_to_dict, print_entities, print_object
from polyadmin.cli._storage import open_service
from polyadmin.result import attempt


def collections_cmd(
    type_name: str = typer.Argument(..., help="Type name"),
    record_id: str = typer.Argument(..., help="Record identifier"),
    models: Optional[str] = typer.Option(None, "--models", help="Python import path for models"),
    models_path: Optional[str] = typer.Option(
        None, "--models-path", help="Filesystem path to models"
    ),
) -> None:
    """Show the items of every collection of one record."""
    from polyadmin.cli import state

    found = require_models(models, models_path)
    with open_service(list(found.values())) as service:
        entity = ec.unwrap_or_exit(attempt(service.get_record, type_name, record_id))
        items = ec.unwrap_or_exit(
            attempt(service.get_records_for_all_sub_collections, type_name, entity)
        )

    if state.json_output:
        print_object(
            {name: [entity_to_dict(e) for e in entities] for name, entities in items.items()},
            json_mode=True,
        )
        return
    for name, entities in items.items():
        print(f"{name} ({len(entities)})")
        print_entities(entities)
        print()
