"""Explicit success/failure values for callers that prefer them to exceptions."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from polyadmin.errors import AdminError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: AdminError

    @property
    def ok(self) -> bool:
        return False

    @property
    def kind(self) -> str:
        return self.error.kind

    def unwrap(self) -> Any:
        raise self.error


Result = Ok[T] | Err


def attempt(func: Callable[..., T], *args: Any, **kwargs: Any) -> Ok[T] | Err:
    """Call ``func`` and capture an AdminError as ``Err``.

    Other exceptions propagate unchanged.
    """
    try:
        return Ok(func(*args, **kwargs))
    except AdminError as e:
        return Err(e)
