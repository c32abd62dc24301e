"""
Specification pattern for reusable query predicates.

A specification pairs a native filter with a human-readable description.
Specifications compose by conjunction: filters are shallow-merged in order
(later keys win) and descriptions are joined with ``AND``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Specification(Protocol):
    """Anything with a filter projection and a description."""

    describe: str

    def to_filter(self) -> dict[str, Any]: ...


@dataclass(frozen=True)
class Spec:
    """Immutable specification built from a filter mapping.

    Example:
        >>> active = Spec({"status": "active"}, "is active")
        >>> active.to_filter()
        {'status': 'active'}
    """

    criteria: Mapping[str, Any] = field(default_factory=dict)
    describe: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "criteria", MappingProxyType(dict(self.criteria)))

    def to_filter(self) -> dict[str, Any]:
        return dict(self.criteria)


def combine_specs(*specs: Specification) -> Spec:
    """Conjunction of ``specs``; later filters win on key collision."""
    criteria: dict[str, Any] = {}
    for spec in specs:
        criteria.update(spec.to_filter())
    return Spec(criteria, " AND ".join(spec.describe for spec in specs))
