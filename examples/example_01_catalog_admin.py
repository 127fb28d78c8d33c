"""Example 01: Administering a product catalog.

This example demonstrates:
- Declaring types with Model, Field[T] and Collection
- An owned sub-object (a product's default sku) edited through dotted names
- Polymorphic collection items (ColorOption inside ProductOption)
- Map-keyed collections and re-keying an item with ``prior_key``
- Reading every sub-collection of a record in one call
"""

from __future__ import annotations

from pathlib import Path

from polyadmin import (
    AdminEntityService,
    Collection,
    EntityForm,
    FilterAndSortCriteria,
    Field,
    Model,
)


class Product(Model):
    id: Field[str] = Field(primary_key=True)
    name: Field[str]
    status: Field[str] = Field(default="ACTIVE", index=True)
    defaultSku: Field[str | None] = Field(default=None, owned="Sku")
    options = Collection("ProductOption", foreign_property="product", sort_property="position")


class Sku(Model):
    id: Field[str] = Field(primary_key=True)
    name: Field[str]
    price: Field[float]
    skuMedia = Collection("SkuMedia", foreign_property="sku", kind="map", map_key="key")


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


def main():
    Path("tmp").mkdir(exist_ok=True)
    db = Path("tmp/catalog_admin.db")
    db.unlink(missing_ok=True)

    with AdminEntityService.open(
        [Product, Sku, SkuMedia, ProductOption, ColorOption], str(db)
    ) as admin:
        md = admin.get_class_metadata("Product")
        print("Product properties:", ", ".join(md.property_names))
        print("Product collections:", ", ".join(c.name for c in md.collections))

        # The sku is created with the product and linked through defaultSku
        shirt = admin.add_entity(
            EntityForm(
                entity_type="Product",
                values={
                    "id": "shirt",
                    "name": "Oxford shirt",
                    "defaultSku.name": "Oxford / M",
                    "defaultSku.price": 49.0,
                },
            )
        )
        print(f"\nAdded {shirt.id} with sku {shirt.value('defaultSku')}")

        admin.add_sub_collection_entity(
            EntityForm(values={"label": "Size", "position": 1}), md, "options", shirt
        )
        admin.add_sub_collection_entity(
            EntityForm(
                entity_type="ColorOption",
                values={"label": "Colour", "position": 0, "color": "white"},
            ),
            md,
            "options",
            shirt,
        )

        # Media hangs off the sku; the service addresses it through the sku's id
        admin.add_sub_collection_entity(
            EntityForm(values={"key": "primary", "url": "https://img.example/oxford.jpg"}),
            md,
            "defaultSku.skuMedia",
            shirt,
        )
        admin.update_sub_collection_entity(
            EntityForm(values={"key": "hero"}, prior_key="primary"),
            md,
            "defaultSku.skuMedia",
            shirt,
        )

        shirt = admin.update_entity(
            EntityForm(
                entity_type="Product",
                id=shirt.id,
                version=shirt.version,
                values={"defaultSku.price": 39.0},
            )
        )
        print(f"Price now {shirt.value('defaultSku.price')} (version {shirt.version})")

        print("\nSub-collections:")
        for name, items in admin.get_records_for_all_sub_collections("Product", shirt).items():
            for item in items:
                print(f"  {name}: {item.type_name} {item.to_dict()}")

        sizes = admin.get_records_for_collection(
            md, shirt, "options", [FilterAndSortCriteria.of("label", "Size")]
        )
        print(f"\nOptions labelled Size: {len(sizes)}")


if __name__ == "__main__":
    main()
