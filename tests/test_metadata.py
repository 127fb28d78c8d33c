"""Tests for metadata resolution, lifting of owned objects, and the cache."""

from __future__ import annotations

import pytest

from polyadmin import (
    AdminConfig,
    AdminEntityService,
    NotFoundError,
    PersistencePackageRequest,
    RequestContext,
    RoleBasedSecurity,
    SecurityError,
)


class TestResolution:
    def test_properties_in_declaration_order(self, service):
        md = service.get_class_metadata(PersistencePackageRequest.for_type("Product"))
        assert md.property_names == [
            "id",
            "name",
            "status",
            "defaultSku",
            "defaultSku.name",
            "defaultSku.price",
        ]
        assert md.primary_key == "id"
        assert not md.is_polymorphic

    def test_property_names_are_unique(self, service):
        for type_name in ("Product", "Sku", "ProductOption", "SkuMedia"):
            names = service.get_class_metadata(type_name).property_names
            assert len(names) == len(set(names))

    def test_unknown_type(self, service):
        with pytest.raises(NotFoundError, match="Type 'Nope'"):
            service.get_class_metadata("Nope")

    def test_polymorphic_subtypes_merged(self, service):
        md = service.get_class_metadata("Sku")
        assert md.polymorphic_types == ("DigitalSku",)
        assert md.resolvable_types() == ("Sku", "DigitalSku")
        download = md.property("downloadUrl")
        assert download is not None
        assert download.declaring_type == "DigitalSku"
        assert md.property("name").declaring_type == "Sku"

    def test_property_descriptors(self, service):
        md = service.get_class_metadata("Product")
        owned = md.property("defaultSku")
        assert owned.is_foreign and owned.owned
        assert owned.foreign_type == "Sku"
        price = md.property("defaultSku.price")
        assert price.owner_path == "defaultSku"
        assert price.field_type == "float"
        assert price.declaring_type == "Sku"

    def test_collections_declared_and_lifted(self, service):
        md = service.get_class_metadata("Product")
        assert [c.name for c in md.collections] == ["options", "defaultSku.skuMedia"]
        options = md.collection("options")
        assert options.owning_type == "Product"
        assert options.foreign_property == "product"
        assert not options.is_map
        media = md.collection("defaultSku.skuMedia")
        assert media.is_map and media.map_key == "key"
        assert media.owning_type == "Sku"
        assert media.owner_path == "defaultSku"

    def test_owned_references(self, service):
        md = service.get_class_metadata("Product")
        (ref,) = md.owned_references
        assert ref.path == "defaultSku"
        assert ref.target_type == "Sku"
        assert ref.owned_members == frozenset({"name", "price", "skuMedia"})

    def test_owned_lifting_can_be_disabled(self, repo):
        service = AdminEntityService(repo, config=AdminConfig(owned_reference_depth=0))
        md = service.get_class_metadata("Product")
        assert md.owned_references == ()
        assert [c.name for c in md.collections] == ["options"]


class TestVisibility:
    def test_restricted_field_hidden_from_anonymous(self, service):
        assert service.get_class_metadata("Product").property("cost") is None

    def test_restricted_field_visible_to_role(self, service, admin):
        md = service.with_context(admin).get_class_metadata("Product")
        assert md.property("cost") is not None


class TestCache:
    def test_populated_once_per_key(self, service, admin):
        first = service.get_class_metadata("Product")
        assert service.get_class_metadata("Product") is first
        as_admin = service.with_context(admin).get_class_metadata("Product")
        assert as_admin is not first
        assert len(service.metadata_cache) == 2

    def test_cache_shared_with_sibling_services(self, service):
        other = service.with_context(RequestContext(principal="someone-else"))
        assert other.get_class_metadata("Sku") is service.get_class_metadata("Sku")

    def test_invalidate_one_type(self, service):
        product = service.get_class_metadata("Product")
        sku = service.get_class_metadata("Sku")
        service.invalidate_metadata("Product")
        assert service.get_class_metadata("Product") is not product
        assert service.get_class_metadata("Sku") is sku

    def test_invalidate_all(self, service):
        service.get_class_metadata("Product")
        service.invalidate_metadata()
        assert len(service.metadata_cache) == 0

    def test_cache_disabled(self, repo):
        service = AdminEntityService(repo, config=AdminConfig(metadata_cache_enabled=False))
        assert service.get_class_metadata("Sku") is not service.get_class_metadata("Sku")
        assert len(service.metadata_cache) == 0


class TestSecurity:
    def test_inspect_denied(self, repo):
        security = RoleBasedSecurity({"Product": {"inspect": ["staff"]}})
        service = AdminEntityService(repo, security=security)
        with pytest.raises(SecurityError) as exc:
            service.get_class_metadata("Product")
        assert exc.value.kind == "security"
        assert len(service.metadata_cache) == 0

        staff = service.with_context(RequestContext("sam", frozenset({"staff"})))
        assert staff.get_class_metadata("Product").type_name == "Product"
