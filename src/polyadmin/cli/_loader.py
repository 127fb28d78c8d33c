"""Model loader: import a Python module and discover Model types."""

from __future__ import annotations

import importlib
import sys
from pathlib import Path

import typer

from polyadmin.model import Model


def load_models(
    models: str | None = None,
    models_path: str | None = None,
) -> dict[str, type[Model]]:
    """Load Model classes from a Python module.

    Args:
        models: Dotted Python import path (e.g. 'myapp.models')
        models_path: Filesystem path to a Python file

    Returns:
        Model classes keyed by type name
    """
    if models_path:
        path = Path(models_path).resolve()
        if not path.exists():
            raise FileNotFoundError(f"Models path not found: {models_path}")
        parent = str(path.parent)
        if parent not in sys.path:
            sys.path.insert(0, parent)
        module = importlib.import_module(path.stem)
    elif models:
        module = importlib.import_module(models)
    else:
        raise ValueError("One of --models or --models-path is required")

    found: dict[str, type[Model]] = {}
    for attr_name in dir(module):
        obj = getattr(module, attr_name)
        if isinstance(obj, type) and issubclass(obj, Model) and obj is not Model:
            found[obj.__type_name__] = obj
    return found


def require_models(models: str | None, models_path: str | None) -> dict[str, type[Model]]:
    """Load models for a command, exiting with a usage or general error code."""
    from polyadmin.cli import _exitcodes as ec
    from polyadmin.cli._output import print_error

    if not models and not models_path:
        print_error("One of --models or --models-path is required")
        raise typer.Exit(ec.USAGE_ERROR)
    try:
        found = load_models(models, models_path)
    except Exception as e:
        print_error(f"Failed to load models: {e}")
        raise typer.Exit(ec.GENERAL_ERROR)
    if not found:
        print_error("No Model types found in models")
        raise typer.Exit(ec.USAGE_ERROR)
    return found
