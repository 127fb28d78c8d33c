"""Tests for CLI model loader."""

import textwrap

import pytest

from polyadmin.cli._loader import load_models


def test_load_models_from_path(tmp_path):
    """Load models from a Python file path."""
    models_file = tmp_path / "loader_models.py"
    models_file.write_text(
        textwrap.dedent("""\
        from polyadmin import Collection, Field, Model

        class Shelf(Model):
            id: Field[str] = Field(primary_key=True)
            books = Collection("Book", foreign_property="shelf")

        class Book(Model):
            id: Field[str] = Field(primary_key=True)
            shelf: Field[str] = Field(foreign_key="Shelf")

        class Ebook(Book):
            url: Field[str]
    """)
    )

    found = load_models(models_path=str(models_file))
    assert set(found) == {"Shelf", "Book", "Ebook"}


def test_load_models_from_import():
    """Load models from Python import path (using the test conftest module)."""
    found = load_models(models="tests.conftest")
    assert {"Product", "Sku", "DigitalSku", "SkuMedia", "ProductOption", "ColorOption"} <= set(
        found
    )


def test_load_models_missing_path():
    with pytest.raises(FileNotFoundError):
        load_models(models_path="/nonexistent/models.py")


def test_load_models_no_args():
    with pytest.raises(ValueError, match="One of"):
        load_models()
