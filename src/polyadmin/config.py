"""Configuration for the polyadmin service."""

from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

REMOVE_POLICIES = ("reject", "cascade")


@dataclass
class AdminConfig:
    """Configuration for the admin service."""

    remove_policy: str = "reject"
    default_page_size: int = 50
    max_page_size: int = 1000
    owned_reference_depth: int = 2
    metadata_cache_enabled: bool = True
    sqlite_timeout_s: float = 5.0

    def __post_init__(self) -> None:
        if self.remove_policy not in REMOVE_POLICIES:
            raise ValueError(
                f"remove_policy must be one of {list(REMOVE_POLICIES)}, got {self.remove_policy!r}"
            )
        if self.default_page_size <= 0 or self.max_page_size <= 0:
            raise ValueError("page sizes must be positive")
        if self.owned_reference_depth < 0:
            raise ValueError("owned_reference_depth must not be negative")


def load_config(path: str | Path) -> AdminConfig:
    """Load an AdminConfig from a YAML mapping."""
    with open(path, encoding="utf-8") as fh:
        data: Any = yaml.safe_load(fh)
    if data is None:
        return AdminConfig()
    if not isinstance(data, dict):
        raise ValueError(f"Config file '{path}' must contain a mapping")
    known = {f.name for f in fields(AdminConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown config keys in '{path}': {unknown}")
    return AdminConfig(**data)
