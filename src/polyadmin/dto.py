"""Request, metadata, and record value types exchanged with callers."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Operation(str, Enum):
    """Operations the security collaborator is asked to authorize."""

    INSPECT = "inspect"
    FETCH = "fetch"
    ADD = "add"
    UPDATE = "update"
    REMOVE = "remove"


class SortDirection(str, Enum):
    ASCENDING = "asc"
    DESCENDING = "desc"


@dataclass(frozen=True)
class RequestContext:
    """Caller identity as seen by the security collaborator."""

    principal: str | None = None
    roles: frozenset[str] = frozenset()

    @classmethod
    def anonymous(cls) -> RequestContext:
        return cls()

    @property
    def cache_key(self) -> tuple[str, ...]:
        # Field visibility depends only on roles
        return tuple(sorted(self.roles))


# --- Metadata ---


@dataclass(frozen=True)
class PropertyMetadata:
    name: str
    field_type: str
    type_spec: dict[str, Any]
    label: str
    declaring_type: str
    primary_key: bool = False
    required: bool = False
    nullable: bool = False
    multi_valued: bool = False
    is_foreign: bool = False
    foreign_type: str | None = None
    owned: bool = False
    owner_path: str | None = None
    # Every type in the hierarchy that declares this name; siblings may share one
    declaring_types: frozenset[str] = frozenset()


@dataclass(frozen=True)
class CollectionMetadata:
    """A declared collection relationship, possibly lifted from an owned object."""

    name: str
    owning_type: str
    target_type: str
    foreign_property: str
    kind: str
    label: str
    map_key: str | None = None
    sort_property: str | None = None
    cascade: bool | None = None
    owner_path: str | None = None

    @property
    def is_map(self) -> bool:
        return self.kind == "map"


@dataclass(frozen=True)
class OwnedReferenceMetadata:
    """An internally-owned sub-object reachable through ``path``.

    ``path`` is the entity property holding the owned object's id;
    ``owned_members`` are the property/collection suffixes it owns.
    """

    path: str
    target_type: str
    owned_members: frozenset[str]


@dataclass(frozen=True)
class ClassMetadata:
    """Resolved structural description of a type."""

    type_name: str
    abstract: bool
    primary_key: str
    properties: tuple[PropertyMetadata, ...]
    polymorphic_types: tuple[str, ...] = ()
    collections: tuple[CollectionMetadata, ...] = ()
    owned_references: tuple[OwnedReferenceMetadata, ...] = ()

    @property
    def is_polymorphic(self) -> bool:
        return bool(self.polymorphic_types)

    @property
    def property_names(self) -> list[str]:
        return [p.name for p in self.properties]

    def property(self, name: str) -> PropertyMetadata | None:
        for p in self.properties:
            if p.name == name:
                return p
        return None

    def collection(self, name: str) -> CollectionMetadata | None:
        for c in self.collections:
            if c.name == name:
                return c
        return None

    def resolvable_types(self) -> tuple[str, ...]:
        """Concrete tags an instance of this type may carry."""
        own = () if self.abstract else (self.type_name,)
        return own + self.polymorphic_types


# --- Records ---


@dataclass
class Property:
    name: str
    value: Any = None
    field_type: str = "any"
    is_foreign: bool = False
    foreign_type: str | None = None
    multi_valued: bool = False

    @property
    def values(self) -> tuple[Any, ...]:
        if self.value is None:
            return ()
        if self.multi_valued:
            return tuple(self.value)
        return (self.value,)


@dataclass
class Entity:
    """Generic record of any declared type."""

    id: str
    type_name: str
    version: int | None = None
    properties: dict[str, Property] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.properties

    def __iter__(self) -> Iterator[Property]:
        return iter(self.properties.values())

    def get(self, name: str) -> Property | None:
        return self.properties.get(name)

    def value(self, name: str, default: Any = None) -> Any:
        prop = self.properties.get(name)
        return default if prop is None else prop.value

    def to_dict(self) -> dict[str, Any]:
        return {name: p.value for name, p in self.properties.items()}


# --- Requests ---


@dataclass(frozen=True)
class FilterAndSortCriteria:
    """One filter/sort criterion. Values are OR'd; criteria are AND'd."""

    field: str
    values: tuple[Any, ...] = ()
    operator: str = "eq"
    sort: SortDirection | None = None

    @classmethod
    def of(
        cls,
        field: str,
        *values: Any,
        operator: str = "eq",
        sort: SortDirection | str | None = None,
    ) -> FilterAndSortCriteria:
        return cls(
            field=field,
            values=tuple(values),
            operator=operator,
            sort=SortDirection(sort) if sort is not None else None,
        )

    @classmethod
    def sort_by(cls, field: str, direction: SortDirection | str = "asc") -> FilterAndSortCriteria:
        return cls(field=field, sort=SortDirection(direction))

    @property
    def filters(self) -> bool:
        return bool(self.values) or self.operator in ("is_null", "not_null")


@dataclass(frozen=True)
class PersistencePackageRequest:
    type_name: str
    criteria: tuple[FilterAndSortCriteria, ...] = ()
    intent: Operation = Operation.FETCH
    custom_criteria: tuple[str, ...] = ()
    start_index: int = 0
    max_results: int | None = None

    @classmethod
    def for_type(
        cls,
        type_name: str,
        criteria: Sequence[FilterAndSortCriteria] = (),
        **kwargs: Any,
    ) -> PersistencePackageRequest:
        return cls(type_name=type_name, criteria=tuple(criteria), **kwargs)


@dataclass
class EntityForm:
    """Caller-supplied, editable representation of an Entity.

    Dotted keys in ``values`` address owned sub-objects. ``prior_key`` is the
    map key an item had before the caller renamed it. ``errors`` is filled
    when validation fails.
    """

    entity_type: str | None = None
    id: str | None = None
    version: int | None = None
    values: dict[str, Any] = field(default_factory=dict)
    prior_key: str | None = None
    errors: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_entity(cls, entity: Entity) -> EntityForm:
        return cls(
            entity_type=entity.type_name,
            id=entity.id,
            version=entity.version,
            values=entity.to_dict(),
        )

    @property
    def has_errors(self) -> bool:
        return any(self.errors.values())


@dataclass(frozen=True)
class CollectionItemKey:
    """Address of a collection item.

    For map collections the prior key wins, then the current key, then the
    item id.
    """

    item_id: str | None = None
    current_key: str | None = None
    prior_key: str | None = None

    def lookup_order(self) -> list[tuple[str, str]]:
        order: list[tuple[str, str]] = []
        if self.prior_key:
            order.append(("prior_key", self.prior_key))
        if self.current_key:
            order.append(("current_key", self.current_key))
        if self.item_id:
            order.append(("item_id", self.item_id))
        return order
