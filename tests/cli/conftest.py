"""Shared fixtures for CLI tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from polyadmin import AdminEntityService, EntityForm
from polyadmin.cli import app

# Reuse the model types from the main conftest
from tests.conftest import CATALOG

if TYPE_CHECKING:
    from click.testing import Result

MODELS = ["--models", "tests.conftest"]


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def cli_db(tmp_path):
    """Create a temp DB path for the CLI."""
    return str(tmp_path / "cli_test.db")


@pytest.fixture
def seeded_db(cli_db):
    """Create a DB with three products, two options, and sku media."""
    with AdminEntityService.open(CATALOG, cli_db) as service:
        shirt = service.add_entity(
            EntityForm(
                entity_type="Product",
                values={
                    "id": "p1",
                    "name": "Shirt",
                    "defaultSku.name": "Shirt / M",
                    "defaultSku.price": 19.5,
                },
            )
        )
        service.add_entity(EntityForm(entity_type="Product", values={"id": "p2", "name": "Hat"}))
        service.add_entity(
            EntityForm(
                entity_type="Product",
                values={"id": "p3", "name": "Socks", "status": "ARCHIVED"},
            )
        )
        md = service.get_class_metadata("Product")
        for label, position in (("Size", 0), ("Fit", 1)):
            service.add_sub_collection_entity(
                EntityForm(values={"label": label, "position": position}), md, "options", shirt
            )
        service.add_sub_collection_entity(
            EntityForm(values={"key": "front", "url": "https://img/front"}),
            md,
            "defaultSku.skuMedia",
            shirt,
        )
    return cli_db


def invoke(runner: CliRunner, args: list[str], db_path: str | None = None) -> "Result":
    """Invoke CLI with proper state setup."""
    if db_path:
        # Inject --db before subcommand
        args = ["--db", db_path] + args
    return runner.invoke(app, args, catch_exceptions=False)
