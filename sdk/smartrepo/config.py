"""
Repository configuration for smartrepo.

A RepositoryConfig is built once per repository, validated at construction
and never mutated afterward. It decides which managed fields exist and how
they behave:
- Timestamps (created/updated, Unix ms)
- Version counter
- Soft-delete marker
- Embedded trace history (latest, bounded, unbounded)
- Scope stamped onto every record and filter

Invariants:
    - Configuration is immutable after construction
    - trace_limit is set if and only if the trace strategy is bounded
    - Managed field keys never collide with each other, the id or the scope

How to change safely:
    - Add new options with defaults that keep existing documents valid
    - Renaming a managed key changes the persisted layout; migrate data first
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class TraceStrategy(Enum):
    """How much audit history is embedded per record."""

    LATEST = "latest"
    BOUNDED = "bounded"
    UNBOUNDED = "unbounded"


def _uuid_id() -> str:
    return str(uuid.uuid4())


def _now_ms() -> int:
    return int(time.time() * 1000)


def _env_int(name: str, option: str, default: int | None) -> int | None:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", option=option)


@dataclass(frozen=True)
class RepositoryConfig:
    """Managed field configuration for one repository.

    Attributes:
        id_key: Field holding the public record id
        scope: Field values every record of this repository must carry
        timestamps: Whether created/updated timestamps are managed
        created_at_key: Field for the creation timestamp
        updated_at_key: Field for the last write timestamp
        versioning: Whether the version counter is managed
        version_key: Field for the version counter
        initial_version: Version assigned at creation
        soft_delete: Mark records deleted instead of removing them
        soft_delete_key: Field for the soft-delete marker
        trace_strategy: Trace history policy (None disables tracing)
        trace_key: Field holding the trace entry or history
        trace_limit: Maximum history length for the bounded strategy
        trace_context: Fixed context copied into every trace entry
        id_factory: Produces ids for entities created without one
        clock: Returns the current time in Unix ms
    """

    id_key: str = "id"
    scope: Mapping[str, Any] = field(default_factory=dict)
    timestamps: bool = False
    created_at_key: str = "createdAt"
    updated_at_key: str = "updatedAt"
    versioning: bool = False
    version_key: str = "version"
    initial_version: int = 1
    soft_delete: bool = False
    soft_delete_key: str = "_deleted"
    trace_strategy: TraceStrategy | None = None
    trace_key: str = "_trace"
    trace_limit: int | None = None
    trace_context: Mapping[str, Any] = field(default_factory=dict)
    id_factory: Callable[[], str] = _uuid_id
    clock: Callable[[], int] = _now_ms

    def __post_init__(self) -> None:
        if isinstance(self.trace_strategy, str):
            try:
                strategy = TraceStrategy(self.trace_strategy.lower())
            except ValueError:
                raise ConfigurationError(
                    f"Invalid trace_strategy '{self.trace_strategy}'. "
                    "Must be one of: latest, bounded, unbounded",
                    option="trace_strategy",
                )
            object.__setattr__(self, "trace_strategy", strategy)
        object.__setattr__(self, "scope", MappingProxyType(dict(self.scope)))
        object.__setattr__(self, "trace_context", MappingProxyType(dict(self.trace_context)))
        self.validate()

    @property
    def tracing(self) -> bool:
        return self.trace_strategy is not None

    @property
    def managed_keys(self) -> frozenset[str]:
        """Fields whose lifecycle the engine controls (the id excluded)."""
        keys = set()
        if self.timestamps:
            keys.update((self.created_at_key, self.updated_at_key))
        if self.versioning:
            keys.add(self.version_key)
        if self.soft_delete:
            keys.add(self.soft_delete_key)
        if self.tracing:
            keys.add(self.trace_key)
        return frozenset(keys)

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ConfigurationError: If configuration is invalid.
        """
        if not self.id_key:
            raise ConfigurationError("id_key must not be empty", option="id_key")

        if self.trace_strategy == TraceStrategy.BOUNDED:
            if self.trace_limit is None:
                raise ConfigurationError(
                    "trace_limit is required when trace_strategy=bounded",
                    option="trace_limit",
                )
            if isinstance(self.trace_limit, bool) or not isinstance(self.trace_limit, int):
                raise ConfigurationError("trace_limit must be an integer", option="trace_limit")
            if self.trace_limit < 1:
                raise ConfigurationError("trace_limit must be at least 1", option="trace_limit")
        elif self.trace_limit is not None:
            raise ConfigurationError(
                "trace_limit is only valid when trace_strategy=bounded",
                option="trace_limit",
            )

        if isinstance(self.initial_version, bool) or not isinstance(self.initial_version, int):
            raise ConfigurationError("initial_version must be an integer", option="initial_version")
        if self.initial_version < 0:
            raise ConfigurationError(
                "initial_version must not be negative", option="initial_version"
            )

        # Every enabled managed key must be distinct and disjoint from id and scope
        enabled: list[tuple[str, str]] = []
        if self.timestamps:
            enabled += [
                ("created_at_key", self.created_at_key),
                ("updated_at_key", self.updated_at_key),
            ]
        if self.versioning:
            enabled.append(("version_key", self.version_key))
        if self.soft_delete:
            enabled.append(("soft_delete_key", self.soft_delete_key))
        if self.tracing:
            enabled.append(("trace_key", self.trace_key))

        seen = {self.id_key: "id_key"}
        for option, key in enabled:
            if not key:
                raise ConfigurationError(f"{option} must not be empty", option=option)
            if key in seen:
                raise ConfigurationError(
                    f"{option} '{key}' collides with {seen[key]}", option=option
                )
            seen[key] = option

        for key in self.scope:
            if key in seen:
                raise ConfigurationError(
                    f"Scope field '{key}' collides with {seen[key]}", option="scope"
                )

    @classmethod
    def from_env(cls, **overrides: Any) -> RepositoryConfig:
        """Load managed field switches from environment variables.

        Values passed as keyword arguments take precedence over the
        environment. Scope, trace context and callables are never read from
        the environment. SMARTREPO_TRACE_LIMIT is read whenever the resulting
        strategy is bounded, whichever source chose it.

        Raises:
            ConfigurationError: If a variable is malformed or the resulting
                configuration is invalid.
        """
        values: dict[str, Any] = {
            "id_key": os.getenv("SMARTREPO_ID_KEY", "id"),
            "timestamps": os.getenv("SMARTREPO_TIMESTAMPS", "false").lower() == "true",
            "versioning": os.getenv("SMARTREPO_VERSIONING", "false").lower() == "true",
            "initial_version": _env_int("SMARTREPO_INITIAL_VERSION", "initial_version", 1),
            "soft_delete": os.getenv("SMARTREPO_SOFT_DELETE", "false").lower() == "true",
            "trace_strategy": os.getenv("SMARTREPO_TRACE_STRATEGY", "").lower() or None,
            "trace_key": os.getenv("SMARTREPO_TRACE_KEY", "_trace"),
        }
        values.update(overrides)

        if "trace_limit" not in overrides:
            strategy = values["trace_strategy"]
            if isinstance(strategy, str):
                strategy = strategy.lower()
            bounded = strategy in (TraceStrategy.BOUNDED, TraceStrategy.BOUNDED.value)
            values["trace_limit"] = (
                _env_int("SMARTREPO_TRACE_LIMIT", "trace_limit", None) if bounded else None
            )
        return cls(**values)

    def log_config(self) -> None:
        """Log configuration (scope values and trace context redacted)."""
        logger.debug(
            "Repository configuration loaded",
            extra={
                "id_key": self.id_key,
                "scope_fields": sorted(self.scope),
                "managed_fields": sorted(self.managed_keys),
                "soft_delete": self.soft_delete,
                "trace_strategy": self.trace_strategy.value if self.trace_strategy else None,
                "trace_limit": self.trace_limit,
            },
        )
