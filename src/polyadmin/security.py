"""Security collaborator contract and the gate every component calls."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Protocol, runtime_checkable

from polyadmin.dto import Operation, RequestContext
from polyadmin.errors import SecurityError

logger = logging.getLogger(__name__)


@runtime_checkable
class SecurityCollaborator(Protocol):
    def authorize(self, operation: Operation, type_name: str, context: RequestContext) -> bool: ...


class AllowAll:
    """Approves every operation."""

    def authorize(self, operation: Operation, type_name: str, context: RequestContext) -> bool:
        return True


class RoleBasedSecurity:
    """Grants operations on types to roles.

    ``grants`` maps a type name (or ``"*"``) to a mapping of operation to the
    roles allowed to perform it. Anything not granted is denied.
    """

    def __init__(self, grants: Mapping[str, Mapping[Operation | str, Iterable[str]]]) -> None:
        self._grants: dict[str, dict[Operation, frozenset[str]]] = {
            type_name: {Operation(op): frozenset(roles) for op, roles in ops.items()}
            for type_name, ops in grants.items()
        }

    def authorize(self, operation: Operation, type_name: str, context: RequestContext) -> bool:
        for key in (type_name, "*"):
            roles = self._grants.get(key, {}).get(operation)
            if roles and roles & context.roles:
                return True
        return False


class SecurityGate:
    """Raises SecurityError when the collaborator denies an operation."""

    def __init__(self, collaborator: SecurityCollaborator | None = None) -> None:
        self._collaborator = collaborator or AllowAll()

    def check(self, operation: Operation, type_name: str, context: RequestContext) -> None:
        if not self._collaborator.authorize(operation, type_name, context):
            logger.info(
                "denied %s on %s for %s", operation.value, type_name, context.principal
            )
            raise SecurityError(operation.value, type_name, context.principal)
