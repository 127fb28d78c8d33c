"""Record queries: criteria execution and generic Entity assembly."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from polyadmin.config import AdminConfig
from polyadmin.dto import (
    ClassMetadata,
    Entity,
    FilterAndSortCriteria,
    Operation,
    PersistencePackageRequest,
    Property,
    RequestContext,
)
from polyadmin.errors import NotFoundError, ValidationError
from polyadmin.filters import FilterExpression, and_all, criteria_to_filter, criteria_to_order
from polyadmin.metadata import MetadataResolver
from polyadmin.security import SecurityGate
from polyadmin.storage import PersistenceProtocol

logger = logging.getLogger(__name__)


class RecordQueryEngine:
    def __init__(
        self,
        repository: PersistenceProtocol,
        security: SecurityGate,
        resolver: MetadataResolver,
        config: AdminConfig | None = None,
    ) -> None:
        self._repo = repository
        self._security = security
        self._resolver = resolver
        self._config = config or AdminConfig()

    def get_records(
        self, request: PersistencePackageRequest, context: RequestContext
    ) -> list[Entity]:
        """Records of the request's type matching all criteria, in sort order."""
        metadata = self._resolver.get_class_metadata(request, context)
        self._security.check(Operation.FETCH, request.type_name, context)
        page = request.max_results or self._config.default_page_size
        limit = min(page, self._config.max_page_size)
        return self.query(
            metadata,
            request.criteria,
            custom_criteria=request.custom_criteria,
            offset=request.start_index,
            limit=limit,
        )

    def count_records(self, request: PersistencePackageRequest, context: RequestContext) -> int:
        metadata = self._resolver.get_class_metadata(request, context)
        self._security.check(Operation.FETCH, request.type_name, context)
        filter_expr, _ = self.compile_criteria(metadata, request.criteria)
        return self._repo.count_records(
            metadata.type_name, filter_expr=filter_expr, custom_criteria=request.custom_criteria
        )

    def get_record(
        self, request: PersistencePackageRequest, record_id: str, context: RequestContext
    ) -> Entity:
        metadata = self._resolver.get_class_metadata(request, context)
        self._security.check(Operation.FETCH, request.type_name, context)
        row = self._repo.get_record(metadata.type_name, record_id)
        if row is None:
            raise NotFoundError(metadata.type_name, record_id)
        return self.build_entity(metadata, row)

    # --- Shared with the collection manager ---

    def compile_criteria(
        self, metadata: ClassMetadata, criteria: Sequence[FilterAndSortCriteria]
    ) -> tuple[FilterExpression | None, list[tuple[str, bool]]]:
        queryable = {p.name for p in metadata.properties if p.owner_path is None}
        unknown = sorted({c.field for c in criteria} - queryable)
        if unknown:
            raise ValidationError(
                f"Cannot filter or sort '{metadata.type_name}' by {unknown}",
                {name: ["not a queryable property"] for name in unknown},
            )
        try:
            return criteria_to_filter(criteria), criteria_to_order(criteria)
        except ValueError as e:
            raise ValidationError(str(e)) from e

    def query(
        self,
        metadata: ClassMetadata,
        criteria: Sequence[FilterAndSortCriteria],
        *,
        extra_filter: FilterExpression | None = None,
        default_order: list[tuple[str, bool]] | None = None,
        custom_criteria: tuple[str, ...] = (),
        offset: int = 0,
        limit: int | None = None,
    ) -> list[Entity]:
        filter_expr, order_by = self.compile_criteria(metadata, criteria)
        logger.debug(
            "query %s filter=%s order=%s offset=%d limit=%s",
            metadata.type_name,
            filter_expr,
            order_by,
            offset,
            limit,
        )
        rows = self._repo.query_records(
            metadata.type_name,
            filter_expr=and_all([extra_filter, filter_expr]),
            order_by=order_by or default_order,
            limit=limit,
            offset=offset,
            custom_criteria=custom_criteria,
        )
        return [self.build_entity(metadata, row) for row in rows]

    def build_entity(self, metadata: ClassMetadata, row: dict[str, Any]) -> Entity:
        """Assemble an Entity from a stored row, in metadata property order.

        Owned sub-objects are read to fill lifted ``path.field`` properties.
        """
        fields: dict[str, Any] = row["fields"]
        lineage = self.lineage(row["type"])
        values: dict[str, Any] = {}
        owned_rows: dict[str, dict[str, Any] | None] = {}
        entity = Entity(id=row["id"], type_name=row["type"], version=row["version"])

        for prop in metadata.properties:
            if prop.owner_path is None:
                if not prop.declaring_types & lineage:
                    continue
                value = fields.get(prop.name)
            else:
                owned = self._owned_row(metadata, prop.owner_path, values, owned_rows)
                suffix = prop.name[len(prop.owner_path) + 1 :]
                value = owned["fields"].get(suffix) if owned is not None else None
            values[prop.name] = value
            entity.properties[prop.name] = Property(
                name=prop.name,
                value=value,
                field_type=prop.field_type,
                is_foreign=prop.is_foreign,
                foreign_type=prop.foreign_type,
                multi_valued=prop.multi_valued,
            )
        return entity

    def lineage(self, type_name: str) -> set[str]:
        names: set[str] = set()
        current: str | None = type_name
        while current is not None:
            names.add(current)
            desc = self._repo.describe(current)
            current = desc.parent if desc is not None else None
        return names

    def _owned_row(
        self,
        metadata: ClassMetadata,
        path: str,
        values: dict[str, Any],
        cache: dict[str, dict[str, Any] | None],
    ) -> dict[str, Any] | None:
        if path not in cache:
            owned_id = values.get(path)
            ref = next(r for r in metadata.owned_references if r.path == path)
            cache[path] = (
                self._repo.get_record(ref.target_type, str(owned_id))
                if owned_id not in (None, "")
                else None
            )
        return cache[path]
