"""AdminEntityService: the public face of the admin core."""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from polyadmin.config import AdminConfig
from polyadmin.dto import (
    ClassMetadata,
    Entity,
    EntityForm,
    FilterAndSortCriteria,
    PersistencePackageRequest,
    RequestContext,
)
from polyadmin.handlers import HandlerContext
from polyadmin.metadata import MetadataCache, MetadataResolver
from polyadmin.model import Model
from polyadmin.persister import EntityPersister
from polyadmin.query import RecordQueryEngine
from polyadmin.registry import TypeRegistry
from polyadmin.relationships import ContextualIdResolver
from polyadmin.security import SecurityCollaborator, SecurityGate
from polyadmin.storage import PersistenceProtocol, open_repository
from polyadmin.subcollections import CollectionRef, CollectionRelationshipManager

RequestLike = PersistencePackageRequest | str


def _request(request: RequestLike) -> PersistencePackageRequest:
    if isinstance(request, str):
        return PersistencePackageRequest.for_type(request)
    return request


class AdminEntityService:
    """Metadata-driven administration of every type known to a repository.

    A service is bound to one RequestContext; ``with_context`` returns a
    sibling bound to another caller that shares the repository and the
    metadata cache.
    """

    def __init__(
        self,
        repository: PersistenceProtocol,
        *,
        security: SecurityCollaborator | None = None,
        config: AdminConfig | None = None,
        context: RequestContext | None = None,
        cache: MetadataCache | None = None,
    ) -> None:
        self.config = config or AdminConfig()
        self.context = context or RequestContext.anonymous()
        self.repository = repository

        gate = SecurityGate(security)
        self._ids = ContextualIdResolver()
        self._resolver = MetadataResolver(repository, gate, self.config, cache)
        self._query = RecordQueryEngine(repository, gate, self._resolver, self.config)
        self._persister = EntityPersister(
            repository, gate, self._resolver, self._query, self.config
        )
        self._collections = CollectionRelationshipManager(
            repository, gate, self._resolver, self._query, self._persister, self._ids
        )

    @classmethod
    def open(
        cls,
        models: Iterable[type[Model]],
        datastore_uri: str | None = None,
        *,
        security: SecurityCollaborator | None = None,
        config: AdminConfig | None = None,
        context: RequestContext | None = None,
    ) -> AdminEntityService:
        """Build a registry for ``models`` and open a SQLite repository."""
        config = config or AdminConfig()
        storage_uri = datastore_uri if datastore_uri and "://" in datastore_uri else None
        db_path = None if storage_uri else datastore_uri
        repository = open_repository(
            TypeRegistry(models),
            db_path,
            storage_uri=storage_uri,
            timeout_s=config.sqlite_timeout_s,
        )
        return cls(repository, security=security, config=config, context=context)

    def __enter__(self) -> AdminEntityService:
        return self

    def __exit__(self, exc_type: Any, exc_value: Any, traceback: Any) -> None:
        self.close()

    def close(self) -> None:
        self.repository.close()

    def with_context(self, context: RequestContext) -> AdminEntityService:
        sibling = copy.copy(self)
        sibling.context = context
        return sibling

    @property
    def metadata_cache(self) -> MetadataCache:
        return self._resolver.cache

    def invalidate_metadata(self, type_name: str | None = None) -> None:
        self._resolver.cache.invalidate(type_name)

    def register_handler(self, func: Callable[[HandlerContext], Any]) -> None:
        """Register a ``@persistence_handler`` for custom criteria tokens."""
        self.repository.register_handler(func)

    # --- Metadata and records ---

    def get_class_metadata(self, request: RequestLike) -> ClassMetadata:
        return self._resolver.get_class_metadata(_request(request), self.context)

    def get_records(self, request: RequestLike) -> list[Entity]:
        return self._query.get_records(_request(request), self.context)

    def count_records(self, request: RequestLike) -> int:
        return self._query.count_records(_request(request), self.context)

    def get_record(self, request: RequestLike, record_id: str) -> Entity:
        return self._query.get_record(_request(request), record_id, self.context)

    def add_entity(self, form: EntityForm, custom_criteria: Sequence[str] = ()) -> Entity:
        return self._persister.add_entity(form, tuple(custom_criteria), self.context)

    def update_entity(self, form: EntityForm, custom_criteria: Sequence[str] = ()) -> Entity:
        return self._persister.update_entity(form, tuple(custom_criteria), self.context)

    def remove_entity(self, form: EntityForm, custom_criteria: Sequence[str] = ()) -> None:
        self._persister.remove_entity(form, tuple(custom_criteria), self.context)

    def get_context_specific_relationship_id(
        self, metadata: ClassMetadata, entity: Entity, property_name: str
    ) -> str:
        return self._ids.get_context_specific_relationship_id(metadata, entity, property_name)

    # --- Sub-collections ---

    def get_advanced_collection_record(
        self,
        containing_metadata: ClassMetadata,
        containing_entity: Entity,
        collection: CollectionRef,
        item_id: str,
    ) -> Entity:
        return self._collections.get_advanced_collection_record(
            containing_metadata, containing_entity, collection, item_id, self.context
        )

    def get_records_for_collection(
        self,
        containing_metadata: ClassMetadata,
        containing_entity: Entity,
        collection: CollectionRef,
        criteria: Sequence[FilterAndSortCriteria] = (),
    ) -> list[Entity]:
        return self._collections.get_records_for_collection(
            containing_metadata, containing_entity, collection, criteria, self.context
        )

    def get_records_for_all_sub_collections(
        self, request: RequestLike, containing_entity: Entity
    ) -> dict[str, list[Entity]]:
        return self._collections.get_records_for_all_sub_collections(
            _request(request), containing_entity, self.context
        )

    def add_sub_collection_entity(
        self,
        form: EntityForm,
        main_metadata: ClassMetadata,
        collection: CollectionRef,
        parent_entity: Entity,
    ) -> Entity:
        return self._collections.add_sub_collection_entity(
            form, main_metadata, collection, parent_entity, self.context
        )

    def update_sub_collection_entity(
        self,
        form: EntityForm,
        main_metadata: ClassMetadata,
        collection: CollectionRef,
        parent_entity: Entity,
        item_id: str | None = None,
    ) -> Entity:
        return self._collections.update_sub_collection_entity(
            form, main_metadata, collection, parent_entity, item_id, self.context
        )

    def remove_sub_collection_entity(
        self,
        main_metadata: ClassMetadata,
        collection: CollectionRef,
        parent_entity: Entity,
        item_id: str | None = None,
        prior_key: str | None = None,
    ) -> None:
        self._collections.remove_sub_collection_entity(
            main_metadata, collection, parent_entity, item_id, prior_key, self.context
        )
