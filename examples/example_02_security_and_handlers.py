"""Example 02: Role-based access, custom criteria, and explicit results.

This example demonstrates:
- RoleBasedSecurity grants and per-caller services via ``with_context``
- Fields visible only to some roles
- A ``@persistence_handler`` that narrows fetches for a custom criteria token
- The cascade remove policy
- ``attempt`` for callers that prefer Ok/Err values to exceptions
"""

from __future__ import annotations

import logging
from pathlib import Path

from polyadmin import (
    AdminConfig,
    AdminEntityService,
    Collection,
    EntityForm,
    Field,
    HandlerContext,
    Model,
    PersistencePackageRequest,
    RequestContext,
    RoleBasedSecurity,
    attempt,
    persistence_handler,
)
from polyadmin.filters import field_equals


class Customer(Model):
    id: Field[str] = Field(primary_key=True)
    name: Field[str]
    region: Field[str] = Field(index=True)
    creditLimit: Field[float | None] = Field(default=None, visible_to=("finance",))
    notes = Collection("CustomerNote", foreign_property="customer")


class CustomerNote(Model):
    id: Field[str] = Field(primary_key=True)
    customer: Field[str] = Field(foreign_key="Customer")
    text: Field[str]


@persistence_handler("emea-only", operations=("fetch",), types=("Customer",))
def emea_only(ctx: HandlerContext) -> None:
    ctx.add_filter(field_equals("region", "EMEA"))


def main():
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    Path("tmp").mkdir(exist_ok=True)
    db = Path("tmp/security_admin.db")
    db.unlink(missing_ok=True)

    security = RoleBasedSecurity(
        {
            "*": {"inspect": ["support", "finance"], "fetch": ["support", "finance"]},
            "Customer": {"add": ["finance"], "update": ["finance"], "remove": ["finance"]},
            "CustomerNote": {"add": ["support", "finance"], "remove": ["finance"]},
        }
    )
    with AdminEntityService.open(
        [Customer, CustomerNote],
        str(db),
        security=security,
        config=AdminConfig(remove_policy="cascade"),
    ) as service:
        service.register_handler(emea_only)
        finance = service.with_context(RequestContext("fin", frozenset({"finance"})))
        support = service.with_context(RequestContext("sup", frozenset({"support"})))

        for cid, name, region in (("c1", "Acme", "EMEA"), ("c2", "Globex", "AMER")):
            finance.add_entity(
                EntityForm(
                    entity_type="Customer",
                    values={"id": cid, "name": name, "region": region, "creditLimit": 5000.0},
                )
            )

        print("finance sees:", finance.get_class_metadata("Customer").property_names)
        print("support sees:", support.get_class_metadata("Customer").property_names)

        emea = support.get_records(
            PersistencePackageRequest.for_type("Customer", custom_criteria=("emea-only",))
        )
        print("EMEA customers:", [c.value("name") for c in emea])

        acme = support.get_record("Customer", "c1")
        md = support.get_class_metadata("Customer")
        support.add_sub_collection_entity(
            EntityForm(values={"text": "Prefers email"}), md, "notes", acme
        )

        result = attempt(
            support.update_entity,
            EntityForm(entity_type="Customer", id="c1", values={"name": "Acme Ltd"}),
        )
        if not result.ok:
            print(f"support update refused ({result.kind}): {result.error.message}")

        finance.remove_entity(EntityForm(entity_type="Customer", id="c1"))
        print("notes left after cascade:", finance.count_records("CustomerNote"))


if __name__ == "__main__":
    main()
