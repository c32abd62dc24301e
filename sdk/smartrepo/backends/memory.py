"""
In-memory document backend for testing.

This module provides a simple in-memory DocumentBackend for:
- Unit tests
- Integration tests of code built on SmartRepo
- Local development without a database

Invariants:
    - All data is lost on process exit
    - Documents are deep-copied on the way in and out
    - insert_many is not atomic: each document succeeds or fails on its own

How to change safely:
    - This is test-only code, changes don't affect production adapters
    - Keep filter semantics identical to SqliteBackend
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from typing import Any

from ..errors import DuplicateIdError, ValidationError
from ..managed_fields import FieldMutations
from .base import InsertManyResult, apply_mutations, matches

logger = logging.getLogger(__name__)


class InMemoryBackend:
    """In-memory implementation of DocumentBackend.

    Attributes:
        id_key: Field holding the record id
        validator: Optional hook called with every document before insert;
            raise ValidationError to reject it

    Thread safety:
        Uses an asyncio lock for writes. Safe to use from multiple
        coroutines.

    Example:
        >>> backend = InMemoryBackend()
        >>> await backend.insert_one({"id": "a", "title": "Hello"})
        'a'
        >>> await backend.count({"title": "Hello"})
        1
    """

    def __init__(
        self,
        id_key: str = "id",
        validator: Callable[[Mapping[str, Any]], None] | None = None,
    ) -> None:
        """Initialize in-memory backend.

        Args:
            id_key: Field holding the record id
            validator: Optional pre-insert validation hook
        """
        self.id_key = id_key
        self.validator = validator
        self._documents: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._documents)

    def raw(self, record_id: str) -> dict[str, Any] | None:
        """Stored document regardless of scope or soft-delete state."""
        document = self._documents.get(record_id)
        return copy.deepcopy(document) if document is not None else None

    def clear(self) -> None:
        self._documents.clear()

    def _insert(self, document: Mapping[str, Any]) -> str:
        record_id = document.get(self.id_key)
        if not isinstance(record_id, str) or not record_id:
            raise ValidationError(
                f"Document requires a string '{self.id_key}'", field_name=self.id_key
            )
        if self.validator is not None:
            self.validator(document)
        if record_id in self._documents:
            raise DuplicateIdError(record_id)
        self._documents[record_id] = copy.deepcopy(dict(document))
        return record_id

    async def insert_one(self, document: Mapping[str, Any]) -> str:
        async with self._lock:
            record_id = self._insert(document)

        logger.debug("Document inserted", extra={"record_id": record_id})
        return record_id

    async def insert_many(self, documents: Sequence[Mapping[str, Any]]) -> InsertManyResult:
        result = InsertManyResult()
        async with self._lock:
            for document in documents:
                try:
                    result.inserted_ids.append(self._insert(document))
                except ValidationError as exc:
                    failed_id = str(document.get(self.id_key))
                    result.failed_ids.append(failed_id)
                    result.errors[failed_id] = exc.message

        logger.debug(
            "Documents inserted",
            extra={"inserted": len(result.inserted_ids), "failed": len(result.failed_ids)},
        )
        return result

    def _first(self, filter: Mapping[str, Any]) -> dict[str, Any] | None:
        record_id = filter.get(self.id_key)
        if isinstance(record_id, str):
            document = self._documents.get(record_id)
            return document if document is not None and matches(document, filter) else None
        for document in self._documents.values():
            if matches(document, filter):
                return document
        return None

    async def find_one(self, filter: Mapping[str, Any]) -> dict[str, Any] | None:
        document = self._first(filter)
        return copy.deepcopy(document) if document is not None else None

    async def find_many(self, filter: Mapping[str, Any]) -> AsyncIterator[dict[str, Any]]:
        # Snapshot ids at first pull; documents deleted meanwhile are skipped
        for record_id in sorted(self._documents):
            document = self._documents.get(record_id)
            if document is not None and matches(document, filter):
                yield copy.deepcopy(document)

    async def update_one(self, filter: Mapping[str, Any], mutations: FieldMutations) -> bool:
        async with self._lock:
            document = self._first(filter)
            if document is None:
                return False
            record_id = document[self.id_key]
            self._documents[record_id] = apply_mutations(document, mutations)

        logger.debug("Document updated", extra={"record_id": record_id})
        return True

    async def delete_one(self, filter: Mapping[str, Any]) -> bool:
        async with self._lock:
            document = self._first(filter)
            if document is None:
                return False
            record_id = document[self.id_key]
            del self._documents[record_id]

        logger.debug("Document deleted", extra={"record_id": record_id})
        return True

    async def count(self, filter: Mapping[str, Any]) -> int:
        return sum(1 for document in self._documents.values() if matches(document, filter))
