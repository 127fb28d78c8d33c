"""CLI helpers for opening the admin service from global CLI state."""

from __future__ import annotations

from polyadmin.config import AdminConfig, load_config
from polyadmin.model import Model
from polyadmin.service import AdminEntityService


def resolve_storage_binding() -> str:
    """Return the datastore URI or path selected on the command line."""
    from polyadmin.cli import state

    return state.storage_uri or state.db


def resolve_config() -> AdminConfig:
    from polyadmin.cli import state

    if state.config:
        return load_config(state.config)
    return AdminConfig()


def open_service(models: list[type[Model]]) -> AdminEntityService:
    """Open the admin service for ``models`` using global CLI storage selection."""
    return AdminEntityService.open(
        models, resolve_storage_binding(), config=resolve_config()
    )
