"""Exit codes for the padmin CLI."""

from __future__ import annotations

from typing import TypeVar

import typer

from polyadmin.errors import AdminError
from polyadmin.result import Err, Ok

T = TypeVar("T")

SUCCESS = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
NOT_FOUND = 3
DENIED = 4
EXECUTION_FAILURE = 5

_BY_KIND = {
    "not_found": NOT_FOUND,
    "security": DENIED,
    "validation": USAGE_ERROR,
    "type_resolution": USAGE_ERROR,
}


def for_error(error: AdminError) -> int:
    return _BY_KIND.get(error.kind, EXECUTION_FAILURE)


def unwrap_or_exit(result: Ok[T] | Err) -> T:
    """Return the value of ``result`` or exit with the code for its error."""
    from polyadmin.cli._output import print_error

    if isinstance(result, Err):
        print_error(result.error.message)
        raise typer.Exit(for_error(result.error))
    return result.value
