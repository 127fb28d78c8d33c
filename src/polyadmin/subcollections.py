"""Items of declared sub-collections, including map-keyed collections."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from polyadmin.dto import (
    ClassMetadata,
    CollectionItemKey,
    CollectionMetadata,
    Entity,
    EntityForm,
    FilterAndSortCriteria,
    Operation,
    PersistencePackageRequest,
    Property,
    RequestContext,
)
from polyadmin.errors import (
    AdminError,
    NotFoundError,
    ServiceError,
    TypeResolutionError,
    ValidationError,
)
from polyadmin.filters import and_all, field_equals
from polyadmin.metadata import MetadataResolver
from polyadmin.persister import EntityPersister, form_errors
from polyadmin.query import RecordQueryEngine
from polyadmin.relationships import ContextualIdResolver
from polyadmin.security import SecurityGate
from polyadmin.storage import PersistenceProtocol

logger = logging.getLogger(__name__)

CollectionRef = Property | str


class CollectionRelationshipManager:
    """Reads and writes items of the collections declared on a type.

    Items point back at their parent through the collection's foreign
    property. The parent id comes from the ContextualIdResolver, so a
    collection lifted from an owned object (``defaultSku.skuMedia``) is
    addressed through the owned object's id.
    """

    def __init__(
        self,
        repository: PersistenceProtocol,
        security: SecurityGate,
        resolver: MetadataResolver,
        query_engine: RecordQueryEngine,
        persister: EntityPersister,
        id_resolver: ContextualIdResolver | None = None,
    ) -> None:
        self._repo = repository
        self._security = security
        self._resolver = resolver
        self._query = query_engine
        self._persister = persister
        self._ids = id_resolver or ContextualIdResolver()

    # --- Reads ---

    def get_advanced_collection_record(
        self,
        containing_metadata: ClassMetadata,
        containing_entity: Entity,
        collection: CollectionRef,
        item_id: str,
        context: RequestContext,
    ) -> Entity:
        coll = self._collection(containing_metadata, collection)
        parent_id = self._parent_id(containing_metadata, containing_entity, coll)
        item_metadata = self._resolver.resolve(coll.target_type, context)
        self._security.check(Operation.FETCH, coll.target_type, context)
        row = self._locate(coll, parent_id, CollectionItemKey(item_id=item_id))
        if row is None:
            raise NotFoundError(f"{coll.name} item", item_id)
        return self._query.build_entity(item_metadata, row)

    def get_records_for_collection(
        self,
        containing_metadata: ClassMetadata,
        containing_entity: Entity,
        collection: CollectionRef,
        criteria: Sequence[FilterAndSortCriteria],
        context: RequestContext,
    ) -> list[Entity]:
        coll = self._collection(containing_metadata, collection)
        parent_id = self._parent_id(containing_metadata, containing_entity, coll)
        return self._list(coll, parent_id, criteria, context)

    def get_records_for_all_sub_collections(
        self,
        request: PersistencePackageRequest,
        containing_entity: Entity,
        context: RequestContext,
    ) -> dict[str, list[Entity]]:
        """Items of every declared collection, keyed by collection name.

        Reads run in one read transaction; the first failure fails the call
        and names the collection in ``sub_operation``.
        """
        metadata = self._resolver.get_class_metadata(request, context)
        results: dict[str, list[Entity]] = {}
        with self._repo.transaction(readonly=True):
            for coll in metadata.collections:
                step = f"collection:{coll.name}"
                try:
                    ref = self._ids.owning_reference(metadata, coll.name)
                    if ref is not None and containing_entity.value(ref.path) in (None, ""):
                        # No owned object yet, so nothing can belong to it
                        results[coll.name] = []
                        continue
                    parent_id = self._parent_id(metadata, containing_entity, coll)
                    results[coll.name] = self._list(coll, parent_id, (), context)
                except AdminError as e:
                    e.sub_operation = e.sub_operation or step
                    raise
                except Exception as e:
                    err = ServiceError(f"Reading collection '{coll.name}' failed: {e}")
                    err.sub_operation = step
                    raise err from e
        return results

    # --- Writes ---

    def add_sub_collection_entity(
        self,
        form: EntityForm,
        main_metadata: ClassMetadata,
        collection: CollectionRef,
        parent_entity: Entity,
        context: RequestContext,
    ) -> Entity:
        coll = self._collection(main_metadata, collection)
        parent_id = self._parent_id(main_metadata, parent_entity, coll)
        item_metadata = self._resolver.resolve(coll.target_type, context)
        self._security.check(Operation.ADD, coll.target_type, context)
        type_name = self._persister.resolve_type(item_metadata, form.entity_type)

        with form_errors(form), self._repo.transaction():
            values = self._link(coll, form.values, parent_id)
            if coll.is_map:
                key = values.get(coll.map_key)
                if key in (None, ""):
                    raise ValidationError(
                        f"Items of '{coll.name}' need a '{coll.map_key}' key",
                        {coll.map_key: ["map key is required"]},
                    )
                self._require_free_key(coll, parent_id, key, None)
            row = self._persister.create(item_metadata, type_name, values, {}, (), context)
        logger.info("added %s %s to %s of %s", row["type"], row["id"], coll.name, parent_id)
        return self._query.build_entity(item_metadata, row)

    def update_sub_collection_entity(
        self,
        form: EntityForm,
        main_metadata: ClassMetadata,
        collection: CollectionRef,
        parent_entity: Entity,
        item_id: str | None,
        context: RequestContext,
    ) -> Entity:
        """Update one item; map items may be re-keyed.

        The existing item is found through ``form.prior_key`` first, so a
        caller that already renamed the key in its working copy still
        reaches the stored entry.
        """
        coll = self._collection(main_metadata, collection)
        parent_id = self._parent_id(main_metadata, parent_entity, coll)
        item_metadata = self._resolver.resolve(coll.target_type, context)
        self._security.check(Operation.UPDATE, coll.target_type, context)

        with form_errors(form), self._repo.transaction():
            new_key = form.values.get(coll.map_key) if coll.is_map else None
            if coll.is_map and coll.map_key in form.values and new_key in (None, ""):
                raise ValidationError(
                    f"Items of '{coll.name}' need a '{coll.map_key}' key",
                    {coll.map_key: ["map key is required"]},
                )
            key = CollectionItemKey(
                item_id=item_id or form.id, current_key=new_key, prior_key=form.prior_key
            )
            row = self._locate(coll, parent_id, key)
            if row is None:
                raise NotFoundError(f"{coll.name} item", _describe_key(key))
            if form.entity_type and form.entity_type not in self._query.lineage(row["type"]):
                raise TypeResolutionError(form.entity_type, item_metadata.type_name, (row["type"],))
            values = self._link(coll, form.values, parent_id)
            if coll.is_map and new_key not in (None, "", row["fields"].get(coll.map_key)):
                self._require_free_key(coll, parent_id, new_key, row["id"])
                logger.info(
                    "re-keying %s item %s from %r to %r",
                    coll.name,
                    row["id"],
                    row["fields"].get(coll.map_key),
                    new_key,
                )
            existing = self._query.build_entity(item_metadata, row).to_dict()
            row = self._persister.modify(
                item_metadata, row, values, existing, form.version, (), context
            )
        return self._query.build_entity(item_metadata, row)

    def remove_sub_collection_entity(
        self,
        main_metadata: ClassMetadata,
        collection: CollectionRef,
        parent_entity: Entity,
        item_id: str | None,
        prior_key: str | None,
        context: RequestContext,
    ) -> None:
        coll = self._collection(main_metadata, collection)
        parent_id = self._parent_id(main_metadata, parent_entity, coll)
        self._security.check(Operation.REMOVE, coll.target_type, context)
        key = CollectionItemKey(item_id=item_id, prior_key=prior_key)
        with self._repo.transaction():
            row = self._locate(coll, parent_id, key)
            if row is None:
                raise NotFoundError(f"{coll.name} item", _describe_key(key))
            self._persister.remove_record(row, None, (), context)

    # --- Internals ---

    @staticmethod
    def _collection(metadata: ClassMetadata, collection: CollectionRef) -> CollectionMetadata:
        name = collection.name if isinstance(collection, Property) else collection
        coll = metadata.collection(name)
        if coll is None:
            raise NotFoundError(f"Collection of '{metadata.type_name}'", name)
        return coll

    def _parent_id(
        self, metadata: ClassMetadata, entity: Entity, coll: CollectionMetadata
    ) -> str:
        return self._ids.get_context_specific_relationship_id(metadata, entity, coll.name)

    def _list(
        self,
        coll: CollectionMetadata,
        parent_id: str,
        criteria: Sequence[FilterAndSortCriteria],
        context: RequestContext,
    ) -> list[Entity]:
        item_metadata = self._resolver.resolve(coll.target_type, context)
        self._security.check(Operation.FETCH, coll.target_type, context)
        order_field = coll.sort_property or (coll.map_key if coll.is_map else None)
        return self._query.query(
            item_metadata,
            criteria,
            extra_filter=field_equals(coll.foreign_property, parent_id),
            default_order=[(order_field, False)] if order_field else None,
        )

    @staticmethod
    def _link(coll: CollectionMetadata, values: dict[str, Any], parent_id: str) -> dict[str, Any]:
        """Form values with the foreign property pointing at the parent."""
        supplied = values.get(coll.foreign_property)
        if supplied not in (None, "", parent_id):
            raise ValidationError(
                f"Items of '{coll.name}' belong to '{parent_id}', not '{supplied}'",
                {coll.foreign_property: ["does not match the parent"]},
            )
        return {**values, coll.foreign_property: parent_id}

    def _holder(self, coll: CollectionMetadata, parent_id: str, key: Any) -> dict[str, Any] | None:
        rows = self._repo.query_records(
            coll.target_type,
            filter_expr=and_all(
                [field_equals(coll.foreign_property, parent_id), field_equals(coll.map_key, key)]
            ),
            limit=1,
        )
        return rows[0] if rows else None

    def _require_free_key(
        self, coll: CollectionMetadata, parent_id: str, key: Any, item_id: str | None
    ) -> None:
        holder = self._holder(coll, parent_id, key)
        if holder is not None and holder["id"] != item_id:
            raise ValidationError(
                f"'{coll.name}' of '{parent_id}' already has an item keyed {key!r}",
                {coll.map_key: ["map key is already in use"]},
            )

    def _locate(
        self, coll: CollectionMetadata, parent_id: str, key: CollectionItemKey
    ) -> dict[str, Any] | None:
        """Find a live item of ``coll`` under ``parent_id``.

        Map items are tried by prior key (its current holder, then the item
        whose history carried it), then by current key, then by item id.
        """
        for label, value in key.lookup_order():
            row: dict[str, Any] | None = None
            if label == "item_id":
                row = self._repo.get_record(coll.target_type, value)
                if row is not None and row["fields"].get(coll.foreign_property) != parent_id:
                    row = None
            elif coll.is_map:
                row = self._holder(coll, parent_id, value)
                if row is None and label == "prior_key":
                    previous = self._repo.find_previously_keyed(
                        coll.target_type,
                        coll.map_key,
                        value,
                        filter_expr=field_equals(coll.foreign_property, parent_id),
                    )
                    row = previous[0] if previous else None
            if row is not None:
                logger.debug("located %s item %s by %s=%r", coll.name, row["id"], label, value)
                return row
        return None


def _describe_key(key: CollectionItemKey) -> str:
    return ", ".join(f"{label}={value}" for label, value in key.lookup_order()) or "<no key>"
