"""Entity persistence: add, update, and remove top-level entities."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import pydantic

from polyadmin.config import AdminConfig
from polyadmin.dto import ClassMetadata, Entity, EntityForm, Operation, RequestContext
from polyadmin.errors import (
    AdminError,
    NotFoundError,
    TypeResolutionError,
    ValidationError,
)
from polyadmin.filters import field_equals
from polyadmin.metadata import MetadataResolver
from polyadmin.query import RecordQueryEngine
from polyadmin.relationships import ContextualIdResolver
from polyadmin.security import SecurityGate
from polyadmin.storage import PersistenceProtocol

logger = logging.getLogger(__name__)


def _field_errors(exc: pydantic.ValidationError) -> dict[str, list[str]]:
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc") or ("",)
        errors.setdefault(str(loc[0]), []).append(err["msg"])
    return errors


class EntityPersister:
    def __init__(
        self,
        repository: PersistenceProtocol,
        security: SecurityGate,
        resolver: MetadataResolver,
        query_engine: RecordQueryEngine,
        config: AdminConfig | None = None,
    ) -> None:
        self._repo = repository
        self._security = security
        self._resolver = resolver
        self._query = query_engine
        self._config = config or AdminConfig()

    # --- Public operations ---

    def add_entity(
        self, form: EntityForm, custom_criteria: tuple[str, ...], context: RequestContext
    ) -> Entity:
        metadata = self._form_metadata(form, context)
        self._security.check(Operation.ADD, metadata.type_name, context)
        type_name = self.resolve_type(metadata, form.entity_type)
        with form_errors(form), self._repo.transaction():
            row = self.create(metadata, type_name, form.values, {}, custom_criteria, context)
        logger.info("added %s %s", row["type"], row["id"])
        return self._query.build_entity(metadata, row)

    def update_entity(
        self, form: EntityForm, custom_criteria: tuple[str, ...], context: RequestContext
    ) -> Entity:
        metadata = self._form_metadata(form, context)
        if not form.id:
            raise ValidationError(
                "An update requires the entity's identifier", {"": ["missing id"]}
            )
        self._security.check(Operation.UPDATE, metadata.type_name, context)
        with form_errors(form), self._repo.transaction():
            row = self._repo.get_record(metadata.type_name, form.id)
            if row is None:
                # A record of another type in the same hierarchy cannot change its type
                root = self._repo.registry.root(metadata.type_name)
                other = self._repo.get_record(root, form.id)
                if other is not None:
                    raise TypeResolutionError(form.entity_type, other["type"], (other["type"],))
                raise NotFoundError(metadata.type_name, form.id)
            existing = self._query.build_entity(metadata, row)
            row = self.modify(
                metadata,
                row,
                form.values,
                existing.to_dict(),
                form.version,
                custom_criteria,
                context,
            )
        logger.info("updated %s %s to version %s", row["type"], row["id"], row["version"])
        return self._query.build_entity(metadata, row)

    def remove_entity(
        self, form: EntityForm, custom_criteria: tuple[str, ...], context: RequestContext
    ) -> None:
        metadata = self._form_metadata(form, context)
        if not form.id:
            raise ValidationError("A remove requires the entity's identifier", {"": ["missing id"]})
        self._security.check(Operation.REMOVE, metadata.type_name, context)
        with self._repo.transaction():
            row = self._repo.get_record(metadata.type_name, form.id)
            if row is None:
                raise NotFoundError(metadata.type_name, form.id)
            self.remove_record(row, form.version, custom_criteria, context)

    # --- Shared with the collection manager ---

    def resolve_type(self, metadata: ClassMetadata, requested: str | None) -> str:
        """Match a requested dynamic type against the metadata's resolvable types."""
        allowed = metadata.resolvable_types()
        if requested is None:
            if not metadata.abstract:
                return metadata.type_name
            if len(allowed) == 1:
                return allowed[0]
            raise TypeResolutionError(None, metadata.type_name, allowed)
        if requested not in allowed:
            raise TypeResolutionError(requested, metadata.type_name, allowed)
        return requested

    def create(
        self,
        metadata: ClassMetadata,
        type_name: str,
        values: dict[str, Any],
        existing: dict[str, Any],
        custom_criteria: tuple[str, ...],
        context: RequestContext,
    ) -> dict[str, Any]:
        """Write owned sub-objects, then a new record of ``type_name``."""
        own = self._write_owned(metadata, type_name, values, existing, context)
        return self._insert(type_name, own, custom_criteria)

    def modify(
        self,
        metadata: ClassMetadata,
        row: dict[str, Any],
        values: dict[str, Any],
        existing: dict[str, Any],
        expected_version: int | None,
        custom_criteria: tuple[str, ...],
        context: RequestContext,
    ) -> dict[str, Any]:
        """Partially update a stored record and its owned sub-objects."""
        own = self._write_owned(metadata, row["type"], values, existing, context)
        return self._update(row, own, expected_version, custom_criteria)

    def remove_record(
        self,
        row: dict[str, Any],
        expected_version: int | None,
        custom_criteria: tuple[str, ...],
        context: RequestContext,
    ) -> None:
        """Delete a record after applying the dependent-collection policy.

        Collections that still hold items reject the removal unless cascade is
        enabled for them; cascades recurse into the items' own collections.
        Callers run this inside a repository transaction.
        """
        desc = self._descriptor(row["type"])
        blocked: list[str] = []
        cascades: list[tuple[str, list[dict[str, Any]]]] = []
        for coll in desc.collections:
            items = self._repo.query_records(
                coll.target, filter_expr=field_equals(coll.foreign_property, row["id"])
            )
            if not items:
                continue
            cascade = coll.cascade if coll.cascade is not None else (
                self._config.remove_policy == "cascade"
            )
            if cascade:
                cascades.append((coll.name, items))
            else:
                blocked.append(coll.name)
        if blocked:
            raise ValidationError(
                f"{row['type']} '{row['id']}' still has items in {blocked}",
                {name: ["collection is not empty"] for name in blocked},
            )
        for coll_name, items in cascades:
            for item in items:
                try:
                    self._security.check(Operation.REMOVE, item["type"], context)
                    self.remove_record(item, None, custom_criteria, context)
                except AdminError as e:
                    e.sub_operation = e.sub_operation or f"cascade:{coll_name}:{item['id']}"
                    raise
            logger.info(
                "cascaded removal of %d item(s) from %s.%s", len(items), row["type"], coll_name
            )
        self._repo.delete_record(
            row["type"],
            row["id"],
            expected_version=expected_version,
            custom_criteria=custom_criteria,
        )
        logger.info("removed %s %s", row["type"], row["id"])
        # Owned sub-objects go with their owner
        for f in desc.fields:
            owned_id = row["fields"].get(f.name) if f.owned else None
            if not owned_id:
                continue
            owned_row = self._repo.get_record(f.foreign_key, str(owned_id))
            if owned_row is not None:
                self._security.check(Operation.REMOVE, f.foreign_key, context)
                self.remove_record(owned_row, None, custom_criteria, context)

    # --- Internals ---

    def _form_metadata(self, form: EntityForm, context: RequestContext) -> ClassMetadata:
        if not form.entity_type:
            raise ValidationError("The form does not name an entity type", {"": ["missing type"]})
        return self._resolver.resolve(form.entity_type, context)

    def _split(
        self, metadata: ClassMetadata, type_name: str, values: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, dict[str, Any]]]:
        """Separate a record's own values from values addressed to owned paths.

        Only properties the caller's metadata exposes are writable.
        """
        lineage = self._query.lineage(type_name)
        own_fields = {
            p.name
            for p in metadata.properties
            if p.owner_path is None and p.declaring_types & lineage
        }
        own: dict[str, Any] = {}
        groups: dict[str, dict[str, Any]] = {}
        unknown: list[str] = []
        for name, value in values.items():
            if "." not in name:
                if name in own_fields:
                    own[name] = value
                else:
                    unknown.append(name)
                continue
            ref = ContextualIdResolver.owning_reference(metadata, name)
            if ref is None:
                unknown.append(name)
                continue
            groups.setdefault(ref.path, {})[name[len(ref.path) + 1 :]] = value
        if unknown:
            raise ValidationError(
                f"Unknown properties for '{type_name}': {sorted(unknown)}",
                {name: ["unknown property"] for name in unknown},
            )
        return own, groups

    def _write_owned(
        self,
        metadata: ClassMetadata,
        type_name: str,
        values: dict[str, Any],
        existing: dict[str, Any],
        context: RequestContext,
    ) -> dict[str, Any]:
        """Create or update owned sub-objects deepest-first; returns own values.

        New owned objects are linked by setting the foreign key on the owner.
        Each write is authorized against the owned type.
        """
        own, groups = self._split(metadata, type_name, values)
        refs = {r.path: r for r in metadata.owned_references}
        for path in sorted(groups, key=lambda p: p.count("."), reverse=True):
            parent_path, _, fk = path.rpartition(".")
            parent_values = own if not parent_path else groups.setdefault(parent_path, {})
            owned_id = parent_values.get(fk) or existing.get(path)
            target = refs[path].target_type
            if owned_id:
                owned_row = self._repo.get_record(target, str(owned_id))
                if owned_row is None:
                    raise NotFoundError(target, str(owned_id))
                self._security.check(Operation.UPDATE, target, context)
                self._update(owned_row, groups[path], None, ())
            else:
                self._security.check(Operation.ADD, target, context)
                owned_type = self._concrete(target)
                owned_row = self._insert(owned_type, groups[path], ())
                parent_values[fk] = owned_row["id"]
        return own

    def _descriptor(self, type_name: str):
        desc = self._repo.describe(type_name)
        if desc is None:
            raise NotFoundError("Type", type_name)
        return desc

    def _concrete(self, type_name: str) -> str:
        desc = self._descriptor(type_name)
        if not desc.abstract:
            return type_name
        concrete = [
            s for s in self._repo.registry.subtypes(type_name) if not self._descriptor(s).abstract
        ]
        if len(concrete) != 1:
            raise TypeResolutionError(None, type_name, tuple(concrete))
        return concrete[0]

    def _validate(self, type_name: str, values: dict[str, Any]) -> dict[str, Any]:
        try:
            record = self._repo.registry.validator(type_name)(**values)
        except pydantic.ValidationError as e:
            raise ValidationError(
                f"Invalid {type_name}: {e.error_count()} error(s)", _field_errors(e)
            ) from e
        return record.model_dump(mode="json")

    def _insert(
        self, type_name: str, values: dict[str, Any], custom_criteria: tuple[str, ...]
    ) -> dict[str, Any]:
        pk = self._descriptor(type_name).primary_key
        record_id = values.get(pk) or uuid.uuid4().hex
        fields = self._validate(type_name, {**values, pk: str(record_id)})
        return self._repo.insert_record(
            type_name, str(record_id), fields, custom_criteria=custom_criteria
        )

    def _update(
        self,
        row: dict[str, Any],
        changes: dict[str, Any],
        expected_version: int | None,
        custom_criteria: tuple[str, ...],
    ) -> dict[str, Any]:
        pk = self._descriptor(row["type"]).primary_key
        if pk in changes and changes[pk] not in (None, row["id"]):
            raise ValidationError(
                f"The identifier of {row['type']} '{row['id']}' cannot change",
                {pk: ["identifier is immutable"]},
            )
        fields = self._validate(row["type"], {**row["fields"], **changes, pk: row["id"]})
        return self._repo.update_record(
            row["type"],
            row["id"],
            fields,
            expected_version=expected_version,
            custom_criteria=custom_criteria,
        )


@contextmanager
def form_errors(form: EntityForm) -> Iterator[None]:
    """Copy validation failures onto the submitted form before re-raising."""
    form.errors = {}
    try:
        yield
    except ValidationError as e:
        form.errors = e.field_errors or {"": [e.message]}
        raise
