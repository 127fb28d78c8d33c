"""padmin records: list, get, and count records of a type."""

from __future__ import annotations

from typing import Optional

import typer

from polyadmin.cli import _exitcodes as ec
from polyadmin.cli._filters import group_filter_args, parse_cli_filters, parse_sort
from polyadmin.cli._loader import require_models
from polyadmin.cli._output import entity_to_dict, print_entities, print_error, print_object
from polyadmin.cli._storage import open_service
from polyadmin.dto import PersistencePackageRequest
from polyadmin.result import attempt

app = typer.Typer(no_args_is_help=True)


@app.command(name="list")
def list_cmd(
    type_name: str = typer.Argument(..., help="Type name"),
    models: Optional[str] = typer.Option(None, "--models", help="Python import path for models"),
    models_path: Optional[str] = typer.Option(
        None, "--models-path", help="Filesystem path to models"
    ),
    filter_args: Optional[list[str]] = typer.Option(
        None, "--filter", help="FIELD OP VALUE_JSON (repeatable)"
    ),
    sort_args: Optional[list[str]] = typer.Option(
        None, "--sort", help="FIELD or FIELD:desc (repeatable)"
    ),
    limit: Optional[int] = typer.Option(None, "--limit", help="Max results"),
    offset: int = typer.Option(0, "--offset", help="Skip first N results"),
) -> None:
    """List records matching all filters."""
    from polyadmin.cli import state

    found = require_models(models, models_path)
    try:
        criteria = parse_cli_filters(group_filter_args(filter_args)) + parse_sort(sort_args)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    request = PersistencePackageRequest.for_type(
        type_name, criteria, start_index=offset, max_results=limit
    )
    with open_service(list(found.values())) as service:
        entities = ec.unwrap_or_exit(attempt(service.get_records, request))
    print_entities(entities, json_mode=state.json_output)


@app.command(name="get")
def get_cmd(
    type_name: str = typer.Argument(..., help="Type name"),
    record_id: str = typer.Argument(..., help="Record identifier"),
    models: Optional[str] = typer.Option(None, "--models", help="Python import path for models"),
    models_path: Optional[str] = typer.Option(
        None, "--models-path", help="Filesystem path to models"
    ),
) -> None:
    """Show one record."""
    from polyadmin.cli import state

    found = require_models(models, models_path)
    with open_service(list(found.values())) as service:
        entity = ec.unwrap_or_exit(attempt(service.get_record, type_name, record_id))
    print_object(entity_to_dict(entity), json_mode=state.json_output)


@app.command(name="count")
def count_cmd(
    type_name: str = typer.Argument(..., help="Type name"),
    models: Optional[str] = typer.Option(None, "--models", help="Python import path for models"),
    models_path: Optional[str] = typer.Option(
        None, "--models-path", help="Filesystem path to models"
    ),
    filter_args: Optional[list[str]] = typer.Option(
        None, "--filter", help="FIELD OP VALUE_JSON (repeatable)"
    ),
) -> None:
    """Count records matching all filters."""
    from polyadmin.cli import state

    found = require_models(models, models_path)
    try:
        criteria = parse_cli_filters(group_filter_args(filter_args))
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(ec.USAGE_ERROR)

    request = PersistencePackageRequest.for_type(type_name, criteria)
    with open_service(list(found.values())) as service:
        total = ec.unwrap_or_exit(attempt(service.count_records, request))
    if state.json_output:
        print_object({"type": type_name, "count": total}, json_mode=True)
    else:
        print(total)
