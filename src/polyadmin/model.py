"""Model, Field, and Collection declarations for administered types."""

from __future__ import annotations

import inspect
import sys
from typing import Any, ClassVar, Generic, TypeVar, get_args

T = TypeVar("T")

_SENTINEL = object()

COLLECTION_KINDS = ("list", "map")


class Field(Generic[T]):
    """Field declaration for a Model.

    ``foreign_key`` names the referenced type. ``owned`` marks the reference as
    an internally-owned sub-object whose properties and collections are
    surfaced on the owner under dotted names.
    """

    def __init__(
        self,
        default: Any = _SENTINEL,
        *,
        default_factory: Any | None = None,
        primary_key: bool = False,
        foreign_key: str | None = None,
        owned: str | None = None,
        index: bool = False,
        label: str | None = None,
        visible_to: tuple[str, ...] | frozenset[str] = (),
    ) -> None:
        if owned is not None and foreign_key is not None and owned != foreign_key:
            raise TypeError("owned and foreign_key must name the same type when both are given")
        self.default = default
        self.default_factory = default_factory
        self.primary_key = primary_key
        self.foreign_key = owned or foreign_key
        self.owned = owned is not None
        self.index = index
        self.label = label
        self.visible_to = frozenset(visible_to)
        self.name: str = ""
        self.annotation: Any = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def has_default(self) -> bool:
        return self.default is not _SENTINEL or self.default_factory is not None

    def get_default(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        if self.default is not _SENTINEL:
            return self.default
        raise ValueError(f"Field '{self.name}' has no default")


class Collection:
    """A declared sub-collection owned by a Model.

    Items are records of ``target`` whose ``foreign_property`` holds the
    owner's id. Map collections address items by the ``map_key`` field.
    """

    def __init__(
        self,
        target: str,
        *,
        foreign_property: str,
        kind: str = "list",
        map_key: str | None = None,
        sort_property: str | None = None,
        cascade: bool | None = None,
        label: str | None = None,
    ) -> None:
        if kind not in COLLECTION_KINDS:
            raise TypeError(
                f"Collection kind must be one of {list(COLLECTION_KINDS)}, got {kind!r}"
            )
        if kind == "map" and not map_key:
            raise TypeError("map collections require map_key")
        if kind == "list" and map_key:
            raise TypeError("map_key is only valid on map collections")
        self.target = target
        self.foreign_property = foreign_property
        self.kind = kind
        self.map_key = map_key
        self.sort_property = sort_property
        self.cascade = cascade
        self.label = label
        self.name: str = ""

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name


def _resolve_annotation(ann: Any, module_name: str) -> Any:
    """Resolve string annotations and extract the inner type from Field[T]."""
    if isinstance(ann, str):
        module = sys.modules.get(module_name, None)
        ns = dict(vars(module)) if module else {}
        ns.setdefault("Field", Field)
        try:
            ann = eval(ann, ns)  # noqa: S307
        except Exception:
            return Any

    origin = getattr(ann, "__origin__", None)
    if origin is Field:
        args = get_args(ann)
        return args[0] if args else Any
    return ann


def _collect_fields(cls: type) -> dict[str, Field[Any]]:
    """Collect Field descriptors declared on the class itself (not parents)."""
    fields: dict[str, Field[Any]] = {}

    annotations = inspect.get_annotations(cls)

    for name, ann in annotations.items():
        origin = getattr(ann, "__origin__", None)
        is_field_ann = origin is Field
        if isinstance(ann, str) and ann.startswith("Field"):
            is_field_ann = True
        if not is_field_ann:
            continue

        val = cls.__dict__.get(name, _SENTINEL)
        field_desc: Field[Any]
        if isinstance(val, Field):
            field_desc = val
        elif val is None:
            # `note: Field[str | None] = None` shorthand
            field_desc = Field(default=None)
        elif val is _SENTINEL:
            field_desc = Field()
        else:
            field_desc = Field(default=val)

        field_desc.name = name
        field_desc.annotation = _resolve_annotation(ann, cls.__module__)
        fields[name] = field_desc

        if not isinstance(cls.__dict__.get(name), Field):
            setattr(cls, name, field_desc)

    return fields


def _collect_collections(cls: type) -> dict[str, Collection]:
    collections: dict[str, Collection] = {}
    for name, val in cls.__dict__.items():
        if isinstance(val, Collection):
            val.name = name
            collections[name] = val
    return collections


class Model:
    """Base class for administered types.

    Subclassing a concrete Model declares a polymorphic subtype: the subclass
    inherits its parent's fields and collections and is tagged with its own
    type name.
    """

    __type_name__: ClassVar[str]
    __parent_type__: ClassVar[str | None]
    __abstract__: ClassVar[bool]
    _field_definitions: ClassVar[dict[str, Field[Any]]]
    _collection_definitions: ClassVar[dict[str, Collection]]
    _primary_key_field: ClassVar[str]

    def __init_subclass__(
        cls, name: str | None = None, abstract: bool = False, **kwargs: Any
    ) -> None:
        super().__init_subclass__(**kwargs)

        cls.__type_name__ = name or cls.__name__
        cls.__abstract__ = abstract

        parent = next((b for b in cls.__bases__ if issubclass(b, Model) and b is not Model), None)
        cls.__parent_type__ = parent.__type_name__ if parent is not None else None

        inherited_fields = dict(parent._field_definitions) if parent is not None else {}
        inherited_collections = dict(parent._collection_definitions) if parent is not None else {}

        own_fields = _collect_fields(cls)
        overridden = sorted(set(own_fields) & set(inherited_fields))
        if overridden:
            raise TypeError(
                f"Model '{cls.__type_name__}' redeclares inherited fields: {overridden}"
            )
        own_collections = _collect_collections(cls)
        clashes = sorted(set(own_collections) & (set(inherited_fields) | set(own_fields)))
        if clashes:
            raise TypeError(
                f"Model '{cls.__type_name__}' uses the same name for a field and a "
                f"collection: {clashes}"
            )

        cls._field_definitions = {**inherited_fields, **own_fields}
        cls._collection_definitions = {**inherited_collections, **own_collections}

        pk_fields = [n for n, f in cls._field_definitions.items() if f.primary_key]
        if len(pk_fields) == 0:
            raise TypeError(
                f"Model '{cls.__type_name__}' must define exactly one Field(primary_key=True)"
            )
        if len(pk_fields) > 1:
            raise TypeError(f"Model '{cls.__type_name__}' has multiple primary keys: {pk_fields}")
        pk = cls._field_definitions[pk_fields[0]]
        if pk.annotation is not str:
            raise TypeError(f"Model '{cls.__type_name__}' primary key must be Field[str]")
        cls._primary_key_field = pk_fields[0]
