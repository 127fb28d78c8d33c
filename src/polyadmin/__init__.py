"""Polyadmin: metadata-driven administration of typed entities."""

__version__ = "0.1.0"

from polyadmin.config import AdminConfig, load_config
from polyadmin.dto import (
    ClassMetadata,
    CollectionItemKey,
    CollectionMetadata,
    Entity,
    EntityForm,
    FilterAndSortCriteria,
    Operation,
    OwnedReferenceMetadata,
    PersistencePackageRequest,
    Property,
    PropertyMetadata,
    RequestContext,
    SortDirection,
)
from polyadmin.errors import (
    AdminError,
    ConflictError,
    NotFoundError,
    SecurityError,
    ServiceError,
    TypeResolutionError,
    ValidationError,
)
from polyadmin.handlers import HandlerContext, persistence_handler
from polyadmin.model import Collection, Field, Model
from polyadmin.registry import TypeRegistry
from polyadmin.result import Err, Ok, Result, attempt
from polyadmin.security import AllowAll, RoleBasedSecurity, SecurityCollaborator
from polyadmin.service import AdminEntityService
from polyadmin.storage import SqliteRepository, open_repository

__all__ = [
    "__version__",
    "Model",
    "Field",
    "Collection",
    "TypeRegistry",
    "AdminEntityService",
    "AdminConfig",
    "load_config",
    "ClassMetadata",
    "PropertyMetadata",
    "CollectionMetadata",
    "OwnedReferenceMetadata",
    "Entity",
    "Property",
    "EntityForm",
    "FilterAndSortCriteria",
    "SortDirection",
    "PersistencePackageRequest",
    "CollectionItemKey",
    "RequestContext",
    "Operation",
    "SecurityCollaborator",
    "AllowAll",
    "RoleBasedSecurity",
    "persistence_handler",
    "HandlerContext",
    "SqliteRepository",
    "open_repository",
    "Ok",
    "Err",
    "Result",
    "attempt",
    "AdminError",
    "NotFoundError",
    "SecurityError",
    "TypeResolutionError",
    "ConflictError",
    "ServiceError",
    "ValidationError",
]
