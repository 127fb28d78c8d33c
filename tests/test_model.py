"""Tests for Model declarations and the TypeRegistry capability table."""

from __future__ import annotations

import pytest

from polyadmin import Collection, Field, Model, TypeRegistry
from tests.conftest import CATALOG, DigitalSku, Product, ProductOption, Sku


class TestModelDeclaration:
    def test_type_name_defaults_to_class_name(self):
        assert Product.__type_name__ == "Product"
        assert Product.__parent_type__ is None

    def test_custom_type_name(self):
        class Brand(Model, name="catalog.Brand"):
            id: Field[str] = Field(primary_key=True)

        assert Brand.__type_name__ == "catalog.Brand"

    def test_subclass_inherits_fields_and_collections(self):
        assert DigitalSku.__parent_type__ == "Sku"
        assert set(Sku._field_definitions) <= set(DigitalSku._field_definitions)
        assert "skuMedia" in DigitalSku._collection_definitions
        assert DigitalSku._primary_key_field == "id"

    def test_owned_sets_foreign_key(self):
        f = Product._field_definitions["defaultSku"]
        assert f.owned is True
        assert f.foreign_key == "Sku"

    def test_missing_primary_key(self):
        with pytest.raises(TypeError, match="exactly one"):

            class NoKey(Model):
                name: Field[str]

    def test_multiple_primary_keys(self):
        with pytest.raises(TypeError, match="multiple primary keys"):

            class TwoKeys(Model):
                a: Field[str] = Field(primary_key=True)
                b: Field[str] = Field(primary_key=True)

    def test_primary_key_must_be_str(self):
        with pytest.raises(TypeError, match="Field\\[str\\]"):

            class IntKey(Model):
                id: Field[int] = Field(primary_key=True)

    def test_redeclared_field_rejected(self):
        with pytest.raises(TypeError, match="redeclares"):

            class BadSku(Sku):
                name: Field[str] = "x"

    def test_field_collection_clash(self):
        with pytest.raises(TypeError, match="same name"):

            class ClashOption(ProductOption):
                label = Collection("ProductOption", foreign_property="product")

    def test_map_collection_requires_key(self):
        with pytest.raises(TypeError, match="map_key"):
            Collection("SkuMedia", foreign_property="sku", kind="map")

    def test_owned_and_foreign_key_must_agree(self):
        with pytest.raises(TypeError, match="same type"):
            Field(owned="Sku", foreign_key="Product")


class TestTypeRegistry:
    def test_descriptors(self, registry):
        desc = registry.descriptor("Product")
        assert desc is not None
        assert desc.primary_key == "id"
        assert [f.name for f in desc.fields] == ["id", "name", "status", "defaultSku", "cost"]
        assert desc.collection("options").sort_property == "position"

    def test_required_and_nullable(self, registry):
        desc = registry.descriptor("Product")
        assert desc.field("name").required is True
        assert desc.field("status").required is False
        assert desc.field("defaultSku").nullable is True
        assert desc.field("defaultSku").field_type == "str"

    def test_subtype_table(self, registry):
        assert registry.subtypes("Sku") == ("DigitalSku",)
        assert registry.family("ProductOption") == ("ProductOption", "ColorOption")
        assert registry.root("DigitalSku") == "Sku"
        assert registry.subtypes("SkuMedia") == ()

    def test_labels(self, registry):
        assert registry.descriptor("Product").field("defaultSku").label == "Default sku"

    def test_validator(self, registry):
        record = registry.validator("ProductOption")(id="o1", product="p1", label="Size")
        assert record.model_dump() == {"id": "o1", "product": "p1", "label": "Size", "position": 0}

    def test_unknown_parent_rejected(self):
        with pytest.raises(TypeError, match="not registered"):
            TypeRegistry([DigitalSku])

    def test_unknown_reference_rejected(self):
        with pytest.raises(TypeError, match="unknown type 'Sku'"):
            TypeRegistry([Product])

    def test_collection_needs_foreign_property(self):
        class Shelf(Model):
            id: Field[str] = Field(primary_key=True)
            products = Collection("Product", foreign_property="shelf")

        with pytest.raises(TypeError, match="no foreign property 'shelf'"):
            TypeRegistry([*CATALOG, Shelf])

    def test_duplicate_type_name(self):
        class Other(Model, name="Product"):
            id: Field[str] = Field(primary_key=True)

        with pytest.raises(TypeError, match="Duplicate type name"):
            TypeRegistry([*CATALOG, Other])
