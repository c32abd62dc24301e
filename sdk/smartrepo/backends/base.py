"""
Backend adapter protocol and shared types.

This module defines the DocumentBackend protocol that every storage adapter
must implement, plus helpers adapters share:
- InsertManyResult: outcome of a non-atomic bulk insert
- apply_mutations: in-process application of FieldMutations

Filters handed to a backend are mappings of dotted field paths to either a
plain value (equality) or an operator document combining ``{"$in": [...]}``,
``{"$gt": value}`` and ``{"$ne": value}``. The repository engine only ever
emits these forms; callers may pass anything the concrete store understands.

Invariants:
    - update_one and delete_one touch at most one record
    - insert_many reports every input document once, as inserted or failed
    - find_many is lazy, yields in ascending id order and closes its
      resources on aclose()

How to change safely:
    - Protocol changes require updating all adapters
    - Keep operator support identical across the reference adapters
"""

from __future__ import annotations

import copy
from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from ..managed_fields import FieldMutations
from ..paths import MISSING, get_path, set_path, unset_path

IN = "$in"
NE = "$ne"
GT = "$gt"
OPERATORS = frozenset((IN, NE, GT))


@dataclass
class InsertManyResult:
    """Outcome of a bulk insert.

    Attributes:
        inserted_ids: Ids persisted, in input order
        failed_ids: Ids rejected, in input order
        errors: Failure reason per failed id
    """

    inserted_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class DocumentBackend(Protocol):
    """Protocol for document store adapters.

    All methods are coroutines except find_many, which returns an async
    iterator directly so it can feed a QueryStream without awaiting.
    """

    async def insert_one(self, document: Mapping[str, Any]) -> str:
        """Insert a document and return its id.

        Raises:
            DuplicateIdError: If the id already exists.
            ValidationError: If the store's own validation rejects the document.
        """
        ...

    async def insert_many(self, documents: Sequence[Mapping[str, Any]]) -> InsertManyResult:
        ...

    async def find_one(self, filter: Mapping[str, Any]) -> dict[str, Any] | None:
        ...

    def find_many(self, filter: Mapping[str, Any]) -> AsyncIterator[dict[str, Any]]:
        ...

    async def update_one(self, filter: Mapping[str, Any], mutations: FieldMutations) -> bool:
        """Apply mutations to the first match. Returns whether a record matched."""
        ...

    async def delete_one(self, filter: Mapping[str, Any]) -> bool:
        ...

    async def count(self, filter: Mapping[str, Any]) -> int:
        ...


def apply_mutations(document: dict[str, Any], mutations: FieldMutations) -> dict[str, Any]:
    """Apply ``mutations`` to a copy of ``document`` and return the copy."""
    result = copy.deepcopy(document)
    for path in mutations.unset:
        unset_path(result, path)
    for path, value in mutations.set.items():
        set_path(result, path, copy.deepcopy(value))
    for path, delta in mutations.increment.items():
        current = get_path(result, path, 0)
        set_path(result, path, (current if isinstance(current, int) else 0) + delta)
    for path, push in mutations.push.items():
        history = get_path(result, path, None)
        set_path(result, path, copy.deepcopy(push.apply(history)))
    return result


def _greater(value: Any, bound: Any) -> bool:
    if value is MISSING or value is None:
        return False
    try:
        return value > bound
    except TypeError:
        return False


def matches(document: Mapping[str, Any], filter: Mapping[str, Any]) -> bool:
    """Evaluate an equality/$in/$gt/$ne filter against a document."""
    for path, condition in filter.items():
        value = get_path(document, path)
        if isinstance(condition, Mapping) and condition and set(condition) <= OPERATORS:
            if IN in condition and (value is MISSING or value not in condition[IN]):
                return False
            if NE in condition and (None if value is MISSING else value) == condition[NE]:
                return False
            if GT in condition and not _greater(value, condition[GT]):
                return False
        elif condition is None:
            if value is not MISSING and value is not None:
                return False
        elif value is MISSING or value != condition:
            return False
    return True
