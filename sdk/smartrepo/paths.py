"""
Dotted field path helpers.

Documents are plain nested dicts; a path such as ``"address.city"`` walks
nested mappings one segment at a time. These helpers are shared by the
repository engine (projection, scope checks) and the reference backends
(filter matching, mutation application).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

MISSING = object()


def split_path(path: str) -> list[str]:
    if not path or any(not part for part in path.split(".")):
        raise ValueError(f"Invalid field path: {path!r}")
    return path.split(".")


def get_path(document: Mapping[str, Any], path: str, default: Any = MISSING) -> Any:
    """Return the value at ``path`` or ``default`` when any segment is absent."""
    current: Any = document
    for part in split_path(path):
        if not isinstance(current, Mapping) or part not in current:
            return default
        current = current[part]
    return current


def set_path(document: dict[str, Any], path: str, value: Any) -> None:
    """Set ``path``, creating (or replacing non-dict) intermediate levels."""
    parts = split_path(path)
    current = document
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = {}
            current[part] = child
        current = child
    current[parts[-1]] = value


def unset_path(document: dict[str, Any], path: str) -> bool:
    """Remove ``path``. Returns whether anything was removed."""
    parts = split_path(path)
    current: Any = document
    for part in parts[:-1]:
        current = current.get(part) if isinstance(current, dict) else None
        if current is None:
            return False
    if isinstance(current, dict) and parts[-1] in current:
        del current[parts[-1]]
        return True
    return False


def project(document: Mapping[str, Any], paths: Iterable[str]) -> dict[str, Any]:
    """Narrow a document to the given paths, keeping nested structure.

    Paths that do not exist in the document are left out.
    """
    result: dict[str, Any] = {}
    for path in paths:
        value = get_path(document, path)
        if value is not MISSING:
            set_path(result, path, value)
    return result
