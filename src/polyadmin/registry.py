"""Capability table: precomputed type descriptors for declared Models."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, create_model
from pydantic import Field as PydanticField

from polyadmin.model import Collection, Field, Model
from polyadmin.type_spec import build_type_spec, field_type_name, is_multi_valued, is_nullable


@dataclass(frozen=True)
class FieldSpec:
    name: str
    annotation: Any
    type_spec: dict[str, Any]
    field_type: str
    primary_key: bool
    required: bool
    nullable: bool
    multi_valued: bool
    foreign_key: str | None
    owned: bool
    index: bool
    label: str
    visible_to: frozenset[str]


@dataclass(frozen=True)
class CollectionSpec:
    name: str
    target: str
    foreign_property: str
    kind: str
    map_key: str | None
    sort_property: str | None
    cascade: bool | None
    label: str


@dataclass(frozen=True)
class TypeDescriptor:
    """Immutable structural description of one declared type."""

    name: str
    parent: str | None
    abstract: bool
    primary_key: str
    fields: tuple[FieldSpec, ...]
    collections: tuple[CollectionSpec, ...]

    def field(self, name: str) -> FieldSpec | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def collection(self, name: str) -> CollectionSpec | None:
        for c in self.collections:
            if c.name == name:
                return c
        return None


def _label(name: str) -> str:
    out = []
    for i, ch in enumerate(name):
        if ch.isupper() and i > 0:
            out.append(" ")
        out.append(ch)
    return "".join(out).replace("_", " ").strip().capitalize()


def _field_spec(f: Field[Any]) -> FieldSpec:
    spec = build_type_spec(f.annotation if f.annotation is not None else Any)
    return FieldSpec(
        name=f.name,
        annotation=f.annotation,
        type_spec=spec,
        field_type=field_type_name(spec),
        primary_key=f.primary_key,
        required=not f.has_default() and not f.primary_key,
        nullable=is_nullable(spec),
        multi_valued=is_multi_valued(spec),
        foreign_key=f.foreign_key,
        owned=f.owned,
        index=f.index,
        label=f.label or _label(f.name),
        visible_to=f.visible_to,
    )


def _collection_spec(c: Collection) -> CollectionSpec:
    return CollectionSpec(
        name=c.name,
        target=c.target,
        foreign_property=c.foreign_property,
        kind=c.kind,
        map_key=c.map_key,
        sort_property=c.sort_property,
        cascade=c.cascade,
        label=c.label or _label(c.name),
    )


def _build_pydantic_model(model_name: str, fields: dict[str, Field[Any]]) -> type[BaseModel]:
    """Build a Pydantic model validating a record's stored field values."""
    pydantic_fields: dict[str, Any] = {}
    for name, f in fields.items():
        ann = f.annotation if f.annotation is not None else Any
        if f.primary_key:
            pydantic_fields[name] = (ann, ...)
        elif f.default_factory is not None:
            pydantic_fields[name] = (ann, PydanticField(default_factory=f.default_factory))
        elif f.has_default():
            pydantic_fields[name] = (ann, f.default)
        else:
            pydantic_fields[name] = (ann, ...)

    return create_model(model_name, **pydantic_fields)  # type: ignore[call-overload]


class TypeRegistry:
    """Mapping from type tag to descriptor, subtype table, and validator.

    Built once from Model classes and treated as immutable afterwards.
    """

    def __init__(self, models: Iterable[type[Model]]) -> None:
        self._models: dict[str, type[Model]] = {}
        for model in models:
            name = model.__type_name__
            if name in self._models and self._models[name] is not model:
                raise TypeError(f"Duplicate type name '{name}'")
            self._models[name] = model

        self._descriptors: dict[str, TypeDescriptor] = {}
        self._validators: dict[str, type[BaseModel]] = {}
        for name, model in self._models.items():
            if model.__parent_type__ is not None and model.__parent_type__ not in self._models:
                raise TypeError(
                    f"Type '{name}' extends '{model.__parent_type__}', which is not registered"
                )
            self._descriptors[name] = TypeDescriptor(
                name=name,
                parent=model.__parent_type__,
                abstract=model.__abstract__,
                primary_key=model._primary_key_field,
                fields=tuple(_field_spec(f) for f in model._field_definitions.values()),
                collections=tuple(
                    _collection_spec(c) for c in model._collection_definitions.values()
                ),
            )
            self._validators[name] = _build_pydantic_model(
                f"_{name}Record", model._field_definitions
            )

        self._subtypes: dict[str, tuple[str, ...]] = {
            name: tuple(n for n in self._descriptors if n != name and self._extends(n, name))
            for name in self._descriptors
        }
        self._check_references()

    def _extends(self, name: str, ancestor: str) -> bool:
        parent = self._descriptors[name].parent
        while parent is not None:
            if parent == ancestor:
                return True
            parent = self._descriptors[parent].parent
        return False

    def _check_references(self) -> None:
        for desc in self._descriptors.values():
            for f in desc.fields:
                if f.foreign_key is not None and f.foreign_key not in self._descriptors:
                    raise TypeError(
                        f"Field '{desc.name}.{f.name}' references unknown type '{f.foreign_key}'"
                    )
            for c in desc.collections:
                target = self._descriptors.get(c.target)
                if target is None:
                    raise TypeError(
                        f"Collection '{desc.name}.{c.name}' targets unknown type '{c.target}'"
                    )
                if target.field(c.foreign_property) is None:
                    raise TypeError(
                        f"Collection '{desc.name}.{c.name}': '{c.target}' has no foreign "
                        f"property '{c.foreign_property}'"
                    )
                if c.map_key is not None and target.field(c.map_key) is None:
                    raise TypeError(
                        f"Collection '{desc.name}.{c.name}': '{c.target}' has no map key "
                        f"field '{c.map_key}'"
                    )

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def names(self) -> list[str]:
        return list(self._descriptors)

    def descriptor(self, name: str) -> TypeDescriptor | None:
        return self._descriptors.get(name)

    def model(self, name: str) -> type[Model] | None:
        return self._models.get(name)

    def subtypes(self, name: str) -> tuple[str, ...]:
        """All registered descendants of ``name``, in registration order."""
        return self._subtypes.get(name, ())

    def family(self, name: str) -> tuple[str, ...]:
        """``name`` plus its descendants: the tags a query for ``name`` matches."""
        return (name, *self.subtypes(name))

    def root(self, name: str) -> str:
        """Top-most ancestor; records of one hierarchy share an id space."""
        desc = self._descriptors[name]
        while desc.parent is not None:
            desc = self._descriptors[desc.parent]
        return desc.name

    def validator(self, name: str) -> type[BaseModel]:
        return self._validators[name]
