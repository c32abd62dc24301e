"""
Repository engine for smartrepo.

SmartRepo exposes one uniform CRUD contract over any DocumentBackend. Every
operation passes through the same steps:

    caller ──▶ ScopeEnforcer ──▶ ManagedFieldPolicy ──▶ backend ──▶ QueryStream
              (filter / id)      (writes only)                     (multi-record reads)

Invariants:
    - Scope is stamped on creates, injected into filters and re-checked on
      point lookups
    - Soft-deleted records never appear in default reads or counts
    - Point-lookup scope breaches look exactly like missing records
    - Bulk writes are issued per target and report partial outcomes
    - Validation failures are raised immediately and never retried
    - find_page cursors are keyed on the id, so writes between pages never
      shift later pages

How to change safely:
    - New operations must go through _read_filter/_write_filter
    - Keep single-id no-ops observable (False) and *_many no-ops silent
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from .backends.base import GT, IN, OPERATORS, DocumentBackend
from .config import RepositoryConfig
from .errors import (
    ConfigurationError,
    CreateManyPartialFailure,
    ScopeBreachError,
    ValidationError,
)
from .managed_fields import ManagedFieldPolicy, UpdateOperation
from .paths import project
from .query_stream import QueryStream
from .scope import CountScopeBreach, FindScopeBreach, ScopeEnforcer
from .specification import Specification

logger = logging.getLogger(__name__)


async def _projected(
    source: AsyncIterator[dict[str, Any]], paths: Sequence[str]
) -> AsyncIterator[dict[str, Any]]:
    async with aclosing(source):
        async for record in source:
            yield project(record, paths)


@dataclass
class Page:
    """One page of a keyset-paginated read.

    Attributes:
        items: Records on this page, in ascending id order
        next_cursor: Opaque token for the following page (None on the last page)
    """

    items: list[dict[str, Any]] = field(default_factory=list)
    next_cursor: str | None = None


def _encode_cursor(last_id: str) -> str:
    raw = json.dumps({"after": last_id}).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def _decode_cursor(cursor: str) -> str:
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError):
        raise ValidationError("Malformed page cursor", field_name="cursor")
    after = payload.get("after") if isinstance(payload, dict) else None
    if not isinstance(after, str):
        raise ValidationError("Malformed page cursor", field_name="cursor")
    return after


class SmartRepo:
    """Scope-aware, managed-field repository over a document backend.

    Attributes:
        backend: Storage adapter executing physical operations
        config: Immutable repository configuration

    Example:
        >>> repo = SmartRepo(
        ...     InMemoryBackend(),
        ...     RepositoryConfig(scope={"tenantId": "t1"}, versioning=True, soft_delete=True),
        ... )
        >>> task_id = await repo.create({"title": "Write docs"})
        >>> await repo.update(task_id, UpdateOperation(set={"title": "Ship docs"}))
        True
        >>> (await repo.get_by_id(task_id))["version"]
        2
    """

    def __init__(self, backend: DocumentBackend, config: RepositoryConfig | None = None) -> None:
        """Initialize the repository.

        Args:
            backend: Storage adapter
            config: Repository configuration (defaults to no managed fields)
        """
        self.backend = backend
        self.config = config or RepositoryConfig()
        self._scope = ScopeEnforcer(self.config.scope)
        self._policy = ManagedFieldPolicy(self.config)
        self._id_key = self.config.id_key
        self.config.log_config()

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def _read_filter(self, caller_filter: Mapping[str, Any] | None) -> dict[str, Any]:
        return self._scope.apply_to_filter({**(caller_filter or {}), **self._policy.live_filter()})

    def _write_filter(self, record_id: str) -> dict[str, Any]:
        return self._read_filter({self._id_key: record_id})

    def _visible(self, record: Mapping[str, Any], operation: str) -> bool:
        if not self._scope.is_in_scope(record):
            self._scope.report_breach(operation, record_id=record.get(self._id_key))
            return False
        return not self._policy.is_deleted(record)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_by_id(
        self, record_id: str, projection: Sequence[str] | None = None
    ) -> dict[str, Any] | None:
        """Fetch one record by id.

        Args:
            record_id: Public record id
            projection: Optional dotted paths to keep

        Returns:
            The record, or None if it is missing, soft deleted or out of scope
        """
        record = await self.backend.find_one({self._id_key: record_id})
        if record is None or not self._visible(record, "get_by_id"):
            return None
        return project(record, projection) if projection is not None else record

    async def get_by_ids(
        self, record_ids: Sequence[str], projection: Sequence[str] | None = None
    ) -> tuple[list[dict[str, Any]], list[str]]:
        """Fetch several records by id.

        Returns:
            (found records in input order, missing ids in input order).
            Duplicated input ids are reported once.
        """
        wanted = list(dict.fromkeys(record_ids))
        if not wanted:
            return [], []

        found: dict[str, dict[str, Any]] = {}
        async with aclosing(self.backend.find_many({self._id_key: {IN: wanted}})) as cursor:
            async for record in cursor:
                record_id = record.get(self._id_key)
                if record_id in found or not self._visible(record, "get_by_ids"):
                    continue
                found[record_id] = record

        records = [
            project(found[rid], projection) if projection is not None else found[rid]
            for rid in wanted
            if rid in found
        ]
        missing = [rid for rid in wanted if rid not in found]
        return records, missing

    def find(
        self,
        filter: Mapping[str, Any] | None = None,
        *,
        projection: Sequence[str] | None = None,
        on_scope_breach: FindScopeBreach | str = FindScopeBreach.EMPTY,
    ) -> QueryStream[dict[str, Any]]:
        """Stream in-scope, non-deleted records matching ``filter``.

        Args:
            filter: Native backend filter
            projection: Optional dotted paths to keep
            on_scope_breach: "empty" yields nothing, "error" fails the stream
                with ScopeBreachError, when the filter contradicts the scope

        Returns:
            A lazy QueryStream; nothing is read until it is pulled.
        """
        policy = FindScopeBreach(on_scope_breach)
        conflicts = self._scope.conflicting_keys(filter)
        if conflicts:
            self._scope.report_breach("find", policy=policy.value)
            if policy == FindScopeBreach.ERROR:
                return QueryStream.failed(ScopeBreachError("find", conflicts))
            return QueryStream.empty()

        source = self.backend.find_many(self._read_filter(filter))
        if projection is not None:
            source = _projected(source, list(projection))
        return QueryStream(source)

    def find_by_spec(
        self,
        spec: Specification,
        *,
        projection: Sequence[str] | None = None,
        on_scope_breach: FindScopeBreach | str = FindScopeBreach.EMPTY,
    ) -> QueryStream[dict[str, Any]]:
        return self.find(spec.to_filter(), projection=projection, on_scope_breach=on_scope_breach)

    async def find_page(
        self,
        filter: Mapping[str, Any] | None = None,
        *,
        limit: int,
        cursor: str | None = None,
        projection: Sequence[str] | None = None,
        on_scope_breach: FindScopeBreach | str = FindScopeBreach.EMPTY,
    ) -> Page:
        """Read one page of in-scope, non-deleted records in ascending id order.

        Pages are keyed on the record id, so records created or deleted
        between calls never shift later pages.

        Args:
            filter: Native backend filter
            limit: Maximum records per page (at least 1)
            cursor: next_cursor of the previous page (None for the first page)
            projection: Optional dotted paths to keep
            on_scope_breach: "empty" gives an empty page, "error" raises
                ScopeBreachError, when the filter contradicts the scope

        Raises:
            ValidationError: If limit is below 1 or the cursor is malformed.
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError("limit must be a positive integer", field_name="limit")
        policy = FindScopeBreach(on_scope_breach)
        after = _decode_cursor(cursor) if cursor is not None else None

        conflicts = self._scope.conflicting_keys(filter)
        if conflicts:
            self._scope.report_breach("find_page", policy=policy.value)
            if policy == FindScopeBreach.ERROR:
                raise ScopeBreachError("find_page", conflicts)
            return Page()

        condition = self._read_filter(filter)
        if after is not None:
            existing = condition.get(self._id_key)
            if isinstance(existing, Mapping) and existing and set(existing) <= OPERATORS:
                condition[self._id_key] = {**existing, GT: after}
            elif self._id_key in condition:
                condition[self._id_key] = {IN: [existing], GT: after}
            else:
                condition[self._id_key] = {GT: after}

        # One extra record tells whether another page exists
        records: list[dict[str, Any]] = []
        async with aclosing(self.backend.find_many(condition)) as source:
            async for record in source:
                records.append(record)
                if len(records) > limit:
                    break

        has_more = len(records) > limit
        records = records[:limit]
        next_cursor = _encode_cursor(records[-1][self._id_key]) if has_more else None
        if projection is not None:
            records = [project(record, projection) for record in records]
        return Page(items=records, next_cursor=next_cursor)

    async def count(
        self,
        filter: Mapping[str, Any] | None = None,
        *,
        on_scope_breach: CountScopeBreach | str = CountScopeBreach.ZERO,
    ) -> int:
        """Count in-scope, non-deleted records matching ``filter``.

        Raises:
            ScopeBreachError: If the filter contradicts the scope and the
                policy is "error".
        """
        policy = CountScopeBreach(on_scope_breach)
        conflicts = self._scope.conflicting_keys(filter)
        if conflicts:
            self._scope.report_breach("count", policy=policy.value)
            if policy == CountScopeBreach.ERROR:
                raise ScopeBreachError("count", conflicts)
            return 0
        return await self.backend.count(self._read_filter(filter))

    async def count_by_spec(
        self,
        spec: Specification,
        *,
        on_scope_breach: CountScopeBreach | str = CountScopeBreach.ZERO,
    ) -> int:
        return await self.count(spec.to_filter(), on_scope_breach=on_scope_breach)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _prepare(
        self, entity: Mapping[str, Any], merge_trace: Mapping[str, Any] | None
    ) -> dict[str, Any]:
        self._policy.check_create(entity)
        document = self._scope.stamp(entity)
        if document.get(self._id_key) is None:
            document[self._id_key] = self.config.id_factory()
        return self._policy.plan_create(document, merge_trace)

    async def create(
        self,
        entity: Mapping[str, Any],
        *,
        merge_trace: Mapping[str, Any] | None = None,
    ) -> str:
        """Create a record and return its id.

        Args:
            entity: Domain fields (may include the id; never managed fields)
            merge_trace: Extra data for the creation trace entry

        Raises:
            ValidationError: If the entity is malformed, outside the scope,
                or rejected by the backend.
            DuplicateIdError: If the id already exists.
        """
        document = self._prepare(entity, merge_trace)
        record_id = await self.backend.insert_one(document)

        logger.debug("Record created", extra={"record_id": record_id})
        return record_id

    async def create_many(
        self,
        entities: Sequence[Mapping[str, Any]],
        *,
        merge_trace: Mapping[str, Any] | None = None,
    ) -> list[str]:
        """Create several records in one backend batch.

        Returns:
            Ids of all created records, in input order.

        Raises:
            ValidationError: If any entity is malformed or the batch repeats an
                id (nothing is inserted).
            CreateManyPartialFailure: If the backend rejected some entities.
                Inserted ones are kept.
        """
        documents = [self._prepare(entity, merge_trace) for entity in entities]
        if not documents:
            return []

        ids = [document[self._id_key] for document in documents]
        repeated = sorted({record_id for record_id in ids if ids.count(record_id) > 1})
        if repeated:
            raise ValidationError(
                f"Batch repeats {self._id_key}: {repeated[0]}",
                field_name=self._id_key,
                errors=[f"'{record_id}' appears more than once" for record_id in repeated],
            )

        result = await self.backend.insert_many(documents)
        if result.failed_ids:
            logger.warning(
                "create_many partially failed",
                extra={
                    "inserted": len(result.inserted_ids),
                    "failed": len(result.failed_ids),
                },
            )
            raise CreateManyPartialFailure(
                inserted_ids=list(result.inserted_ids),
                failed_ids=list(result.failed_ids),
            )

        logger.debug("Records created", extra={"count": len(result.inserted_ids)})
        return list(result.inserted_ids)

    async def update(
        self,
        record_id: str,
        update: UpdateOperation | Mapping[str, Any],
        *,
        merge_trace: Mapping[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> bool:
        """Apply an update to one record.

        Args:
            record_id: Target id
            update: UpdateOperation or {"set": ..., "unset": ...}
            merge_trace: Extra data for the trace entry
            expected_version: Only update if the stored version matches

        Returns:
            True if the record was updated; False if it is missing, out of
            scope, soft deleted or at a different version.

        Raises:
            ValidationError: If the update is malformed or touches protected fields.
            ConfigurationError: If expected_version is used without versioning.
        """
        op = UpdateOperation.coerce(update)
        self._policy.check_update(op)

        condition = self._write_filter(record_id)
        if expected_version is not None:
            if not self.config.versioning:
                raise ConfigurationError(
                    "expected_version requires versioning=True", option="versioning"
                )
            condition[self.config.version_key] = expected_version

        mutations = self._policy.plan_update(merge_trace).with_update(op)
        updated = await self.backend.update_one(condition, mutations)
        if not updated:
            logger.debug("Update matched no record", extra={"record_id": record_id})
        return updated

    async def update_many(
        self,
        record_ids: Sequence[str],
        update: UpdateOperation | Mapping[str, Any],
        *,
        merge_trace: Mapping[str, Any] | None = None,
    ) -> list[str]:
        """Apply the same update to several records.

        Missing and out-of-scope targets are skipped silently.

        Returns:
            Ids that were actually updated.
        """
        op = UpdateOperation.coerce(update)
        self._policy.check_update(op)

        updated = []
        for record_id in dict.fromkeys(record_ids):
            mutations = self._policy.plan_update(merge_trace).with_update(op)
            if await self.backend.update_one(self._write_filter(record_id), mutations):
                updated.append(record_id)
        return updated

    async def _delete_one(
        self, record_id: str, merge_trace: Mapping[str, Any] | None
    ) -> bool:
        condition = self._write_filter(record_id)
        mutations = self._policy.plan_delete(merge_trace)
        if mutations is None:
            return await self.backend.delete_one(condition)
        return await self.backend.update_one(condition, mutations)

    async def delete(
        self,
        record_id: str,
        *,
        merge_trace: Mapping[str, Any] | None = None,
    ) -> bool:
        """Delete one record (soft or hard per configuration).

        Returns:
            True if a record was deleted; False if it is missing, out of
            scope or already soft deleted.
        """
        deleted = await self._delete_one(record_id, merge_trace)
        if deleted:
            logger.debug(
                "Record deleted",
                extra={"record_id": record_id, "soft": self.config.soft_delete},
            )
        else:
            logger.debug("Delete matched no record", extra={"record_id": record_id})
        return deleted

    async def delete_many(
        self,
        record_ids: Sequence[str],
        *,
        merge_trace: Mapping[str, Any] | None = None,
    ) -> list[str]:
        """Delete several records; missing and out-of-scope ids are skipped.

        Returns:
            Ids that were actually deleted.
        """
        deleted = []
        for record_id in dict.fromkeys(record_ids):
            if await self._delete_one(record_id, merge_trace):
                deleted.append(record_id)
        return deleted
