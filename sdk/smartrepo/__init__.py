"""
smartrepo - Consistency layer for document databases.

This library puts one uniform CRUD contract in front of document stores:
- Record identity (immutable public ids)
- Multi-tenant scope stamped on writes and injected into every filter
- Optimistic concurrency through a managed version counter
- Soft deletion
- Audit traces embedded in records (latest, bounded, unbounded)
- Lazy, shareable query streams with take/skip/paged views

Complex queries stay in the store's native filter language.

Example:
    >>> from smartrepo import InMemoryBackend, RepositoryConfig, SmartRepo
    >>>
    >>> repo = SmartRepo(
    ...     InMemoryBackend(),
    ...     RepositoryConfig(
    ...         scope={"tenantId": "t1"},
    ...         timestamps=True,
    ...         versioning=True,
    ...         soft_delete=True,
    ...         trace_strategy="bounded",
    ...         trace_limit=5,
    ...         trace_context={"actor": "user:42"},
    ...     ),
    ... )
    >>> task_id = await repo.create({"title": "My Task"})
    >>> open_tasks = await repo.find({"status": "open"}).take(10).to_list()

Invariants:
    - Ids are assigned once and never change
    - Version increases by exactly 1 per successful update
    - Soft-deleted records never reappear in default reads

Version: 1.0.0
"""

__version__ = "1.0.0"

from .backends import DocumentBackend, InMemoryBackend, InsertManyResult, SqliteBackend
from .config import RepositoryConfig, TraceStrategy
from .errors import (
    ConfigurationError,
    CreateManyPartialFailure,
    DuplicateIdError,
    ScopeBreachError,
    SmartRepoError,
    ValidationError,
)
from .managed_fields import FieldMutations, ManagedFieldPolicy, UpdateOperation
from .observability import ObservabilitySettings, setup_logging
from .query_stream import QueryStream
from .repository import Page, SmartRepo
from .scope import CountScopeBreach, FindScopeBreach, ScopeCheck, ScopeEnforcer
from .specification import Spec, Specification, combine_specs
from .trace import TraceBuilder, TraceOp, TracePush

__all__ = [
    # Version
    "__version__",
    # Repository
    "SmartRepo",
    "Page",
    "RepositoryConfig",
    "TraceStrategy",
    "UpdateOperation",
    # Streams and specifications
    "QueryStream",
    "Specification",
    "Spec",
    "combine_specs",
    # Policies
    "ManagedFieldPolicy",
    "FieldMutations",
    "ScopeEnforcer",
    "ScopeCheck",
    "FindScopeBreach",
    "CountScopeBreach",
    "TraceBuilder",
    "TraceOp",
    "TracePush",
    # Backends
    "DocumentBackend",
    "InsertManyResult",
    "InMemoryBackend",
    "SqliteBackend",
    # Logging
    "ObservabilitySettings",
    "setup_logging",
    # Errors
    "SmartRepoError",
    "ConfigurationError",
    "ValidationError",
    "DuplicateIdError",
    "ScopeBreachError",
    "CreateManyPartialFailure",
]
