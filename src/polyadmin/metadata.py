"""Metadata resolution: ClassMetadata for any registered type."""

from __future__ import annotations

import logging
import dataclasses
import threading
from collections.abc import Callable

from polyadmin.config import AdminConfig
from polyadmin.dto import (
    ClassMetadata,
    CollectionMetadata,
    Operation,
    OwnedReferenceMetadata,
    PersistencePackageRequest,
    PropertyMetadata,
    RequestContext,
)
from polyadmin.errors import NotFoundError, ServiceError
from polyadmin.registry import CollectionSpec, FieldSpec, TypeDescriptor
from polyadmin.security import SecurityGate
from polyadmin.storage import PersistenceProtocol

logger = logging.getLogger(__name__)

CacheKey = tuple[str, tuple[str, ...]]


class MetadataCache:
    """Resolved metadata keyed by (type name, caller roles).

    Each key is populated at most once; invalidation is exclusive.
    """

    def __init__(self) -> None:
        self._entries: dict[CacheKey, ClassMetadata] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get_or_build(self, key: CacheKey, build: Callable[[], ClassMetadata]) -> ClassMetadata:
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                cached = build()
                self._entries[key] = cached
                logger.debug("cached metadata for %s roles=%s", key[0], list(key[1]))
            return cached

    def invalidate(self, type_name: str | None = None) -> None:
        """Drop every entry, or only those for ``type_name``."""
        with self._lock:
            if type_name is None:
                self._entries.clear()
            else:
                for key in [k for k in self._entries if k[0] == type_name]:
                    del self._entries[key]
        logger.debug("invalidated metadata cache for %s", type_name or "all types")


class MetadataResolver:
    def __init__(
        self,
        repository: PersistenceProtocol,
        security: SecurityGate,
        config: AdminConfig | None = None,
        cache: MetadataCache | None = None,
    ) -> None:
        self._repo = repository
        self._security = security
        self._config = config or AdminConfig()
        self.cache = cache or MetadataCache()

    def get_class_metadata(
        self, request: PersistencePackageRequest, context: RequestContext
    ) -> ClassMetadata:
        """Resolve metadata for the type named in ``request``.

        Raises NotFoundError for unknown types and SecurityError when the
        caller may not inspect the type.
        """
        return self.resolve(request.type_name, context)

    def resolve(self, type_name: str, context: RequestContext) -> ClassMetadata:
        if self._repo.describe(type_name) is None:
            raise NotFoundError("Type", type_name)
        self._security.check(Operation.INSPECT, type_name, context)
        if not self._config.metadata_cache_enabled:
            return self._build(type_name, context)
        return self.cache.get_or_build(
            (type_name, context.cache_key), lambda: self._build(type_name, context)
        )

    def _describe(self, type_name: str) -> TypeDescriptor:
        desc = self._repo.describe(type_name)
        if desc is None:
            raise NotFoundError("Type", type_name)
        return desc

    def _build(self, type_name: str, context: RequestContext) -> ClassMetadata:
        desc = self._describe(type_name)
        registry = self._repo.registry
        subtypes = registry.subtypes(type_name)

        properties: list[PropertyMetadata] = []
        merged: dict[str, int] = {}
        for declaring in (type_name, *subtypes):
            for f in self._describe(declaring).fields:
                if not _visible(f, context):
                    continue
                if f.name in merged:
                    # Inherited, or declared again by a sibling subtype
                    i = merged[f.name]
                    prop = properties[i]
                    properties[i] = dataclasses.replace(
                        prop, declaring_types=prop.declaring_types | {declaring}
                    )
                    continue
                merged[f.name] = len(properties)
                properties.append(_property(f, declaring))

        collections = [_collection(c, type_name) for c in desc.collections]
        owned: list[OwnedReferenceMetadata] = []
        self._lift_owned(desc, "", context, properties, collections, owned, depth=1)

        names = [p.name for p in properties] + [c.name for c in collections]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ServiceError(
                f"Type '{type_name}' resolves duplicate property names: {duplicates}"
            )

        return ClassMetadata(
            type_name=type_name,
            abstract=desc.abstract,
            primary_key=desc.primary_key,
            properties=tuple(properties),
            polymorphic_types=tuple(s for s in subtypes if not self._describe(s).abstract),
            collections=tuple(collections),
            owned_references=tuple(owned),
        )

    def _lift_owned(
        self,
        desc: TypeDescriptor,
        prefix: str,
        context: RequestContext,
        properties: list[PropertyMetadata],
        collections: list[CollectionMetadata],
        owned: list[OwnedReferenceMetadata],
        *,
        depth: int,
    ) -> None:
        """Surface owned sub-objects' fields and collections under dotted names."""
        if depth > self._config.owned_reference_depth:
            return
        for f in desc.fields:
            if not f.owned or f.foreign_key is None or not _visible(f, context):
                continue
            path = f"{prefix}{f.name}"
            target = self._describe(f.foreign_key)
            members: set[str] = set()
            for tf in target.fields:
                if tf.primary_key or not _visible(tf, context):
                    continue
                members.add(tf.name)
                properties.append(_property(tf, target.name, owner_path=path))
            for tc in target.collections:
                members.add(tc.name)
                collections.append(_collection(tc, target.name, owner_path=path))
            self._lift_owned(
                target, f"{path}.", context, properties, collections, owned, depth=depth + 1
            )
            owned.append(
                OwnedReferenceMetadata(
                    path=path, target_type=target.name, owned_members=frozenset(members)
                )
            )


def _visible(f: FieldSpec, context: RequestContext) -> bool:
    return not f.visible_to or bool(f.visible_to & context.roles)


def _property(f: FieldSpec, declaring: str, owner_path: str | None = None) -> PropertyMetadata:
    return PropertyMetadata(
        name=f.name if owner_path is None else f"{owner_path}.{f.name}",
        field_type=f.field_type,
        type_spec=f.type_spec,
        label=f.label,
        declaring_type=declaring,
        primary_key=f.primary_key and owner_path is None,
        required=f.required,
        nullable=f.nullable,
        multi_valued=f.multi_valued,
        is_foreign=f.foreign_key is not None,
        foreign_type=f.foreign_key,
        owned=f.owned,
        owner_path=owner_path,
        declaring_types=frozenset({declaring}),
    )


def _collection(
    c: CollectionSpec, owning_type: str, owner_path: str | None = None
) -> CollectionMetadata:
    return CollectionMetadata(
        name=c.name if owner_path is None else f"{owner_path}.{c.name}",
        owning_type=owning_type,
        target_type=c.target,
        foreign_property=c.foreign_property,
        kind=c.kind,
        label=c.label,
        map_key=c.map_key,
        sort_property=c.sort_property,
        cascade=c.cascade,
        owner_path=owner_path,
    )
