"""Polyadmin CLI: operator console for administered records."""

from __future__ import annotations

import logging
from typing import Optional

import typer
from click.core import ParameterSource

from polyadmin.cli import collections, metadata, records

app = typer.Typer(
    name="padmin",
    help="Polyadmin CLI: inspect metadata, records, and sub-collections.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    db: str = "admin.db"
    storage_uri: str | None = None
    config: str | None = None
    json_output: bool = False
    verbose: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        try:
            from importlib.metadata import version

            v = version("polyadmin")
        except Exception:
            from polyadmin import __version__ as v
        print(f"padmin {v}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None,
        "--db",
        envvar="POLYADMIN_DB",
        help="SQLite database file path (default: admin.db)",
    ),
    storage_uri: Optional[str] = typer.Option(
        None,
        "--storage-uri",
        envvar="POLYADMIN_STORAGE_URI",
        help="Storage URI (e.g. sqlite:///admin.db)",
    ),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        envvar="POLYADMIN_CONFIG",
        help="YAML config file path",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all padmin commands."""
    from polyadmin.storage import parse_storage_target

    db_source = ctx.get_parameter_source("db")
    uri_source = ctx.get_parameter_source("storage_uri")

    resolved_db = db or "admin.db"
    resolved_uri = storage_uri
    # Explicit --db overrides POLYADMIN_STORAGE_URI unless --storage-uri is also given
    if db_source == ParameterSource.COMMANDLINE and uri_source == ParameterSource.ENVIRONMENT:
        resolved_uri = None
    if resolved_uri:
        explicit_db = resolved_db if db_source == ParameterSource.COMMANDLINE else None
        try:
            parse_storage_target(db_path=explicit_db, storage_uri=resolved_uri)
        except Exception as e:
            raise typer.BadParameter(str(e))

    state.db = resolved_db
    state.storage_uri = resolved_uri
    state.config = config
    state.json_output = json_output
    state.verbose = verbose
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.add_typer(records.app, name="records", help="List, fetch, and count records")
app.command(name="metadata")(metadata.metadata_cmd)
app.command(name="collections")(collections.collections_cmd)


def main() -> None:
    """Entry point for the padmin CLI."""
    app()
