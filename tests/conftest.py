"""Shared test fixtures for polyadmin tests."""

from __future__ import annotations

import pytest

from polyadmin import (
    AdminConfig,
    AdminEntityService,
    Collection,
    EntityForm,
    Field,
    Model,
    RequestContext,
    TypeRegistry,
)
from polyadmin.storage import SqliteRepository

# --- Catalog types ---


class Product(Model):
    id: Field[str] = Field(primary_key=True)
    name: Field[str]
    status: Field[str] = Field(default="ACTIVE", index=True)
    defaultSku: Field[str | None] = Field(default=None, owned="Sku")
    cost: Field[float | None] = Field(default=None, visible_to=("admin",))
    options = Collection("ProductOption", foreign_property="product", sort_property="position")


class Sku(Model):
    id: Field[str] = Field(primary_key=True)
    name: Field[str]
    price: Field[float]
    skuMedia = Collection("SkuMedia", foreign_property="sku", kind="map", map_key="key")


class DigitalSku(Sku):
    downloadUrl: Field[str | None] = None


class SkuMedia(Model):
    id: Field[str] = Field(primary_key=True)
    sku: Field[str] = Field(foreign_key="Sku")
    key: Field[str]
    url: Field[str]


class ProductOption(Model):
    id: Field[str] = Field(primary_key=True)
    product: Field[str] = Field(foreign_key="Product")
    label: Field[str]
    position: Field[int] = 0


class ColorOption(ProductOption):
    color: Field[str]


CATALOG = [Product, Sku, DigitalSku, SkuMedia, ProductOption, ColorOption]


# --- Fixtures ---


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary SQLite database path."""
    return str(tmp_path / "test.db")


@pytest.fixture
def registry():
    return TypeRegistry(CATALOG)


@pytest.fixture
def repo(tmp_db, registry):
    """Create a SqliteRepository over the catalog types."""
    r = SqliteRepository(tmp_db, registry)
    yield r
    r.close()


@pytest.fixture
def config():
    return AdminConfig()


@pytest.fixture
def service(repo, config):
    """An allow-all admin service bound to an anonymous caller."""
    return AdminEntityService(repo, config=config)


@pytest.fixture
def product(service):
    """A stored product with an owned default sku."""
    return service.add_entity(
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


@pytest.fixture
def admin():
    return RequestContext(principal="root", roles=frozenset({"admin"}))
