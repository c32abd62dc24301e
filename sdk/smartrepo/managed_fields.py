"""
Managed field policy for smartrepo.

Computes every field the engine owns for a write, given the repository
configuration:
- create: timestamps, initial version, soft-delete marker, first trace entry
- update: version +1, updated timestamp, trace entry
- delete: soft-delete marker plus the update bookkeeping (soft delete only)

Plans are pure: they read the configured clock once and never touch a
backend. Backends apply the resulting FieldMutations atomically per record.

Invariants:
    - Callers can never write the id, a managed field or a scope field
    - Version moves by exactly +1 per successful update or soft delete
    - A record is created with the soft-delete marker explicitly False
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .config import RepositoryConfig, TraceStrategy
from .errors import ValidationError
from .paths import split_path
from .trace import TraceBuilder, TraceOp, TracePush


@dataclass(frozen=True)
class UpdateOperation:
    """Caller-supplied change to a record.

    At least one of ``set`` and ``unset`` must be given. ``unset`` accepts a
    single path or a sequence of paths.

    Raises:
        ValidationError: If the operation is empty or touches a path twice.
    """

    set: Mapping[str, Any] | None = None
    unset: str | Sequence[str] | None = None

    def __post_init__(self) -> None:
        if self.set is None and self.unset is None:
            raise ValidationError("Update requires set, unset or both")
        if self.set is not None and not isinstance(self.set, Mapping):
            raise ValidationError("Update set must be a mapping", field_name="set")

        unset = [self.unset] if isinstance(self.unset, str) else list(self.unset or [])
        if any(not isinstance(path, str) for path in unset):
            raise ValidationError("Update unset must contain field paths", field_name="unset")
        object.__setattr__(self, "unset", tuple(unset))
        object.__setattr__(self, "set", dict(self.set or {}))

        if not self.set and not self.unset:
            raise ValidationError("Update must change at least one field")
        both = sorted(set(self.set) & set(self.unset))
        if both:
            raise ValidationError(
                f"Field cannot be both set and unset: {both[0]}",
                field_name=both[0],
                errors=[f"'{path}' in set and unset" for path in both],
            )

    @classmethod
    def coerce(cls, value: UpdateOperation | Mapping[str, Any]) -> UpdateOperation:
        """Accept an UpdateOperation or a ``{"set": ..., "unset": ...}`` mapping."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, Mapping):
            raise ValidationError("Update must be an UpdateOperation or a mapping")
        extra = set(value) - {"set", "unset"}
        if extra:
            raise ValidationError(f"Unknown update keys: {sorted(extra)}")
        return cls(set=value.get("set"), unset=value.get("unset"))

    @property
    def paths(self) -> list[str]:
        return list(self.set) + list(self.unset)


@dataclass
class FieldMutations:
    """Backend-neutral description of a single-record write.

    Backends apply the parts in this order: unset, set, increment, push.

    Attributes:
        set: Paths to assign
        unset: Paths to remove
        increment: Paths to increase by an integer (missing counts as 0)
        push: Trace histories to append to
    """

    set: dict[str, Any] = field(default_factory=dict)
    unset: list[str] = field(default_factory=list)
    increment: dict[str, int] = field(default_factory=dict)
    push: dict[str, TracePush] = field(default_factory=dict)

    def with_update(self, op: UpdateOperation) -> FieldMutations:
        """Combine engine mutations with a caller update."""
        return FieldMutations(
            set={**op.set, **self.set},
            unset=[*op.unset, *self.unset],
            increment=dict(self.increment),
            push=dict(self.push),
        )


class ManagedFieldPolicy:
    """Plans managed field values for create, update and delete.

    Example:
        >>> policy = ManagedFieldPolicy(RepositoryConfig(versioning=True))
        >>> policy.plan_update().increment
        {'version': 1}
    """

    def __init__(self, config: RepositoryConfig) -> None:
        self.config = config
        self.tracer = (
            TraceBuilder(config.trace_strategy, config.trace_limit, config.trace_context)
            if config.trace_strategy is not None
            else None
        )

    def plan_create(
        self,
        entity: Mapping[str, Any],
        merge_trace: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Return the full document to insert for ``entity``.

        The entity must already carry its id and scope fields.
        """
        config = self.config
        now = config.clock()
        document = dict(entity)
        if config.timestamps:
            document[config.created_at_key] = now
            document[config.updated_at_key] = now
        if config.versioning:
            document[config.version_key] = config.initial_version
        if config.soft_delete:
            document[config.soft_delete_key] = False
        if self.tracer is not None:
            entry = self.tracer.entry(TraceOp.CREATE, now, merge_trace)
            document[config.trace_key] = self.tracer.initial(entry)
        return document

    def plan_update(self, merge_trace: Mapping[str, Any] | None = None) -> FieldMutations:
        return self._plan_write(TraceOp.UPDATE, merge_trace)

    def plan_delete(
        self, merge_trace: Mapping[str, Any] | None = None
    ) -> FieldMutations | None:
        """Soft-delete mutations, or None when deletes are physical."""
        if not self.config.soft_delete:
            return None
        mutations = self._plan_write(TraceOp.DELETE, merge_trace)
        mutations.set[self.config.soft_delete_key] = True
        return mutations

    def _plan_write(
        self, op: TraceOp, merge_trace: Mapping[str, Any] | None
    ) -> FieldMutations:
        config = self.config
        now = config.clock()
        mutations = FieldMutations()
        if config.timestamps:
            mutations.set[config.updated_at_key] = now
        if config.versioning:
            mutations.increment[config.version_key] = 1
        if self.tracer is not None:
            entry = self.tracer.entry(op, now, merge_trace)
            if self.tracer.strategy == TraceStrategy.LATEST:
                mutations.set[config.trace_key] = entry
            else:
                mutations.push[config.trace_key] = self.tracer.push(entry)
        return mutations

    def live_filter(self) -> dict[str, Any]:
        """Predicate excluding soft-deleted records (empty for hard delete)."""
        if not self.config.soft_delete:
            return {}
        return {self.config.soft_delete_key: {"$ne": True}}

    def is_deleted(self, record: Mapping[str, Any]) -> bool:
        return self.config.soft_delete and record.get(self.config.soft_delete_key) is True

    def check_create(self, entity: Mapping[str, Any]) -> None:
        """Reject entities that try to supply managed fields.

        Raises:
            ValidationError: If the entity is not a mapping or names a managed field.
        """
        if not isinstance(entity, Mapping):
            raise ValidationError(
                f"Entity must be a mapping, got {type(entity).__name__}"
            )
        managed = sorted(self.config.managed_keys & set(entity))
        if managed:
            raise ValidationError(
                f"Managed field cannot be supplied on create: {managed[0]}",
                field_name=managed[0],
                errors=[f"'{key}' is managed" for key in managed],
            )
        record_id = entity.get(self.config.id_key)
        if record_id is not None and (not isinstance(record_id, str) or not record_id):
            raise ValidationError(
                f"{self.config.id_key} must be a non-empty string",
                field_name=self.config.id_key,
            )

    def check_update(self, op: UpdateOperation) -> None:
        """Reject updates that touch the id, managed fields or scope fields.

        Raises:
            ValidationError: If a protected field (or a parent/child of one) is named.
        """
        protected = {self.config.id_key, *self.config.managed_keys, *self.config.scope}
        errors = []
        for path in op.paths:
            try:
                parts = split_path(path)
            except ValueError as exc:
                raise ValidationError(str(exc), field_name=path)
            for key in protected:
                key_parts = key.split(".")
                shorter = min(len(parts), len(key_parts))
                if parts[:shorter] == key_parts[:shorter]:
                    errors.append(f"'{path}' overlaps protected field '{key}'")
        if errors:
            raise ValidationError(
                f"Update touches protected fields: {errors[0]}",
                errors=errors,
            )
