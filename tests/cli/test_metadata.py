"""Tests for padmin metadata command."""

import json
import textwrap

from tests.cli.conftest import MODELS, invoke


def test_metadata_text(runner, cli_db):
    result = invoke(runner, ["metadata", "ProductOption", *MODELS], cli_db)
    assert result.exit_code == 0
    assert "Type: ProductOption" in result.output
    assert "Subtypes: ColorOption" in result.output
    assert "color" in result.output


def test_metadata_json(runner, cli_db):
    result = invoke(runner, ["--json", "metadata", "Product", *MODELS], cli_db)
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["type"] == "Product"
    assert data["primary_key"] == "id"
    names = [p["name"] for p in data["properties"]]
    assert "defaultSku.price" in names
    assert "cost" not in names
    assert [c["name"] for c in data["collections"]] == ["options", "defaultSku.skuMedia"]
    assert data["owned_references"] == [
        {"path": "defaultSku", "target": "Sku", "members": ["name", "price", "skuMedia"]}
    ]


def test_metadata_unknown_type(runner, cli_db):
    result = invoke(runner, ["metadata", "Nonexistent", *MODELS], cli_db)
    assert result.exit_code == 3


def test_metadata_models_path(runner, cli_db, tmp_path):
    models_file = tmp_path / "shop_models.py"
    models_file.write_text(
        textwrap.dedent("""\
        from polyadmin import Field, Model

        class Voucher(Model):
            id: Field[str] = Field(primary_key=True)
            code: Field[str]
    """)
    )
    result = invoke(runner, ["metadata", "Voucher", "--models-path", str(models_file)], cli_db)
    assert result.exit_code == 0
    assert "Type: Voucher" in result.output
    assert "code" in result.output


def test_metadata_missing_models_path(runner, cli_db):
    result = invoke(runner, ["metadata", "Sku", "--models-path", "nowhere.py"], cli_db)
    assert result.exit_code == 1
