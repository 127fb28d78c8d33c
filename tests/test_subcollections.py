"""Tests for sub-collection items: lists, map-keyed collections, and re-keying."""

from __future__ import annotations

import pytest

from polyadmin import (
    AdminConfig,
    AdminEntityService,
    EntityForm,
    FilterAndSortCriteria,
    NotFoundError,
    Property,
    RequestContext,
    RoleBasedSecurity,
    SecurityError,
    ServiceError,
    TypeResolutionError,
    ValidationError,
)

MEDIA = "defaultSku.skuMedia"


@pytest.fixture
def md(service):
    return service.get_class_metadata("Product")


def _media(service, md, product, key, url=None):
    return service.add_sub_collection_entity(
        EntityForm(values={"key": key, "url": url or f"https://img/{key}"}), md, MEDIA, product
    )


def _option(service, md, product, label, position, **kwargs):
    return service.add_sub_collection_entity(
        EntityForm(values={"label": label, "position": position}, **kwargs),
        md,
        "options",
        product,
    )


class TestListCollections:
    def test_add_links_parent(self, service, md, product):
        option = _option(service, md, product, "Size", 0)
        assert option.type_name == "ProductOption"
        assert option.value("product") == product.id

    def test_default_order_is_sort_property(self, service, md, product):
        _option(service, md, product, "Fit", 2)
        _option(service, md, product, "Size", 0)
        _option(service, md, product, "Colour", 1)
        items = service.get_records_for_collection(md, product, "options")
        assert [i.value("label") for i in items] == ["Size", "Colour", "Fit"]

    def test_criteria_filter_and_sort(self, service, md, product):
        _option(service, md, product, "Fit", 2)
        _option(service, md, product, "Size", 0)
        _option(service, md, product, "Sleeve", 1)
        items = service.get_records_for_collection(
            md,
            product,
            "options",
            [
                FilterAndSortCriteria.of("label", "S", operator="like"),
                FilterAndSortCriteria.sort_by("label", "desc"),
            ],
        )
        assert [i.value("label") for i in items] == ["Sleeve", "Size"]

    def test_items_are_scoped_to_parent(self, service, md, product):
        other = service.add_entity(EntityForm(entity_type="Product", values={"name": "Hat"}))
        _option(service, md, product, "Size", 0)
        assert service.get_records_for_collection(md, other, "options") == []

    def test_polymorphic_item(self, service, md, product):
        form = EntityForm(
            entity_type="ColorOption", values={"label": "Colour", "color": "navy"}
        )
        added = service.add_sub_collection_entity(form, md, "options", product)
        assert added.type_name == "ColorOption"
        assert added.value("color") == "navy"
        stored = service.get_advanced_collection_record(md, product, "options", added.id)
        assert stored.type_name == "ColorOption"

    def test_mixed_item_types(self, service, md, product):
        _option(service, md, product, "Size", 0)
        service.add_sub_collection_entity(
            EntityForm(entity_type="ColorOption", values={"label": "Colour", "color": "navy"}),
            md,
            "options",
            product,
        )
        items = service.get_records_for_collection(md, product, "options")
        assert [(i.type_name, i.value("color")) for i in items] == [
            ("ProductOption", None),
            ("ColorOption", "navy"),
        ]

    def test_unresolvable_item_type(self, service, md, product):
        form = EntityForm(entity_type="Sku", values={"label": "x"})
        with pytest.raises(TypeResolutionError) as exc:
            service.add_sub_collection_entity(form, md, "options", product)
        assert exc.value.allowed == ("ProductOption", "ColorOption")
        assert service.count_records("ProductOption") == 0

    def test_foreign_property_must_match_parent(self, service, md, product):
        form = EntityForm(values={"label": "x", "product": "someone-else"})
        with pytest.raises(ValidationError, match="belong"):
            service.add_sub_collection_entity(form, md, "options", product)

    def test_unknown_collection(self, service, md, product):
        with pytest.raises(NotFoundError, match="variants"):
            service.get_records_for_collection(md, product, "variants")

    def test_collection_given_as_property(self, service, md, product):
        _option(service, md, product, "Size", 0)
        ref = Property(name="options")
        assert len(service.get_records_for_collection(md, product, ref)) == 1


class TestAdvancedRecord:
    def test_found(self, service, md, product):
        option = _option(service, md, product, "Size", 0)
        fetched = service.get_advanced_collection_record(md, product, "options", option.id)
        assert fetched.id == option.id
        assert fetched.value("label") == "Size"

    def test_item_of_other_parent(self, service, md, product):
        other = service.add_entity(EntityForm(entity_type="Product", values={"name": "Hat"}))
        option = _option(service, md, product, "Size", 0)
        with pytest.raises(NotFoundError):
            service.get_advanced_collection_record(md, other, "options", option.id)

    def test_owned_collection_uses_owned_id(self, service, md, product):
        media = _media(service, md, product, "front")
        assert media.value("sku") == product.value("defaultSku")
        assert media.value("sku") != product.id
        fetched = service.get_advanced_collection_record(md, product, MEDIA, media.id)
        assert fetched.value("key") == "front"


class TestMapCollections:
    def test_default_order_is_key(self, service, md, product):
        for key in ("side", "back", "front"):
            _media(service, md, product, key)
        items = service.get_records_for_collection(md, product, MEDIA)
        assert [i.value("key") for i in items] == ["back", "front", "side"]

    def test_key_required(self, service, md, product):
        form = EntityForm(values={"url": "https://img"})
        with pytest.raises(ValidationError, match="key"):
            service.add_sub_collection_entity(form, md, MEDIA, product)
        assert form.errors == {"key": ["map key is required"]}

    def test_key_unique_per_parent(self, service, md, product):
        _media(service, md, product, "front")
        with pytest.raises(ValidationError, match="already has an item keyed 'front'"):
            _media(service, md, product, "front")

    def test_same_key_under_other_parent(self, service, md, product):
        other = service.add_entity(
            EntityForm(
                entity_type="Product",
                values={"name": "Hat", "defaultSku.name": "Hat", "defaultSku.price": 5},
            )
        )
        _media(service, md, product, "front")
        _media(service, md, other, "front")
        assert service.count_records("SkuMedia") == 2

    def test_rekey_then_remove_by_prior_key(self, service, md, product):
        _media(service, md, product, "primary")
        form = EntityForm(values={"key": "hero", "url": "https://img/hero"}, prior_key="primary")
        updated = service.update_sub_collection_entity(form, md, MEDIA, product)
        assert updated.value("key") == "hero"
        items = service.get_records_for_collection(md, product, MEDIA)
        assert [(i.id, i.value("key")) for i in items] == [(updated.id, "hero")]

        service.remove_sub_collection_entity(md, MEDIA, product, None, "primary")
        assert service.get_records_for_collection(md, product, MEDIA) == []

    def test_prior_key_takes_precedence_over_item_id(self, service, md, product):
        a = _media(service, md, product, "a")
        b = _media(service, md, product, "b")
        form = EntityForm(values={"url": "https://img/changed"}, prior_key="b")
        updated = service.update_sub_collection_entity(form, md, MEDIA, product, a.id)
        assert updated.id == b.id
        assert service.get_advanced_collection_record(md, product, MEDIA, a.id).value(
            "url"
        ) == "https://img/a"

    def test_item_id_suffices_without_prior_key(self, service, md, product):
        media = _media(service, md, product, "front")
        service.remove_sub_collection_entity(md, MEDIA, product, media.id, None)
        assert service.count_records("SkuMedia") == 0

    def test_rekey_onto_existing_key(self, service, md, product):
        _media(service, md, product, "front")
        _media(service, md, product, "back")
        form = EntityForm(values={"key": "back"}, prior_key="front")
        with pytest.raises(ValidationError, match="already has an item keyed 'back'"):
            service.update_sub_collection_entity(form, md, MEDIA, product)
        keys = [i.value("key") for i in service.get_records_for_collection(md, product, MEDIA)]
        assert keys == ["back", "front"]

    def test_update_cannot_clear_key(self, service, md, product):
        media = _media(service, md, product, "front")
        for blank in ("", None):
            form = EntityForm(values={"key": blank}, prior_key="front")
            with pytest.raises(ValidationError, match="need a 'key' key"):
                service.update_sub_collection_entity(form, md, MEDIA, product)
            assert form.errors == {"key": ["map key is required"]}
        fetched = service.get_advanced_collection_record(md, product, MEDIA, media.id)
        assert fetched.value("key") == "front"

    def test_nothing_matches(self, service, md, product):
        with pytest.raises(NotFoundError, match="prior_key=nope"):
            service.remove_sub_collection_entity(md, MEDIA, product, None, "nope")

    def test_owned_object_missing(self, service, md):
        bare = service.add_entity(EntityForm(entity_type="Product", values={"name": "Hat"}))
        with pytest.raises(NotFoundError):
            _media(service, md, bare, "front")


class TestItemLifecycle:
    def test_removed_item_is_terminal(self, service, md, product):
        option = _option(service, md, product, "Size", 0)
        service.remove_sub_collection_entity(md, "options", product, option.id)
        with pytest.raises(NotFoundError):
            service.update_sub_collection_entity(
                EntityForm(values={"label": "Fit"}), md, "options", product, option.id
            )
        with pytest.raises(NotFoundError):
            service.remove_sub_collection_entity(md, "options", product, option.id)
        with pytest.raises(ValidationError, match="removed"):
            service.add_sub_collection_entity(
                EntityForm(values={"id": option.id, "label": "Size"}), md, "options", product
            )

    def test_update_keeps_other_values(self, service, md, product):
        option = _option(service, md, product, "Size", 3)
        updated = service.update_sub_collection_entity(
            EntityForm(values={"label": "Fit"}), md, "options", product, option.id
        )
        assert updated.value("position") == 3
        assert updated.version > option.version

    def test_update_cannot_change_type(self, service, md, product):
        option = _option(service, md, product, "Size", 0)
        with pytest.raises(TypeResolutionError):
            service.update_sub_collection_entity(
                EntityForm(entity_type="ColorOption", values={"color": "red"}),
                md,
                "options",
                product,
                option.id,
            )


class TestAllSubCollections:
    def test_every_collection_present(self, service, md, product):
        _option(service, md, product, "Size", 0)
        _media(service, md, product, "front")
        result = service.get_records_for_all_sub_collections("Product", product)
        assert set(result) == {"options", MEDIA}
        assert len(result["options"]) == 1
        assert [m.value("key") for m in result[MEDIA]] == ["front"]

    def test_owned_collection_empty_without_owned_object(self, service):
        bare = service.add_entity(EntityForm(entity_type="Product", values={"name": "Hat"}))
        result = service.get_records_for_all_sub_collections("Product", bare)
        assert result == {"options": [], MEDIA: []}

    def test_one_failure_fails_the_call(self, repo, product):
        security = RoleBasedSecurity(
            {
                "*": {"inspect": ["clerk"]},
                "Product": {"fetch": ["clerk"]},
                "SkuMedia": {"fetch": ["clerk"]},
            }
        )
        service = AdminEntityService(repo, security=security)
        clerk = service.with_context(RequestContext("cat", frozenset({"clerk"})))
        with pytest.raises(SecurityError) as exc:
            clerk.get_records_for_all_sub_collections("Product", product)
        assert exc.value.sub_operation == "collection:options"

    def test_backend_failure_is_wrapped(self, service, md, product, monkeypatch):
        real = service.repository.query_records

        def flaky(type_name, **kwargs):
            if type_name == "SkuMedia":
                raise RuntimeError("disk on fire")
            return real(type_name, **kwargs)

        monkeypatch.setattr(service.repository, "query_records", flaky)
        with pytest.raises(ServiceError) as exc:
            service.get_records_for_all_sub_collections("Product", product)
        assert exc.value.sub_operation == f"collection:{MEDIA}"
        assert "disk on fire" in exc.value.message


class TestCollectionSecurity:
    def test_item_type_authorized(self, repo, product):
        security = RoleBasedSecurity(
            {"*": {"inspect": ["staff"], "fetch": ["staff"]}, "SkuMedia": {"add": ["staff"]}}
        )
        service = AdminEntityService(repo, security=security)
        staff = service.with_context(RequestContext("sam", frozenset({"staff"})))
        md = staff.get_class_metadata("Product")
        _media(staff, md, product, "front")
        with pytest.raises(SecurityError, match="add 'ProductOption'"):
            _option(staff, md, product, "Size", 0)
        assert staff.count_records("ProductOption") == 0

    def test_cascade_through_collection_removal(self, repo, product):
        service = AdminEntityService(repo, config=AdminConfig(remove_policy="cascade"))
        md = service.get_class_metadata("Product")
        _media(service, md, product, "front")
        service.remove_entity(EntityForm(entity_type="Product", id=product.id))
        assert service.count_records("SkuMedia") == 0
        assert service.count_records("Sku") == 0
