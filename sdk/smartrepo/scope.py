"""
Scope enforcement for smartrepo.

A scope is a fixed set of field values (typically a tenant id) that every
record of a repository carries. This module:
- Stamps the scope onto new entities
- Injects the scope into every collection filter
- Re-validates point lookups, which fetch by id and bypass the filter

Invariants:
    - Scope values always win over caller filter values
    - A point-lookup breach is indistinguishable from absence
    - Collection breaches follow the caller's empty/zero/error policy
    - Foreign values are never logged or placed in error messages
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any

from .errors import ValidationError
from .paths import MISSING, get_path, set_path

logger = logging.getLogger(__name__)


class ScopeCheck(Enum):
    """Outcome of checking a fetched record against the scope."""

    IN_SCOPE = "in_scope"
    BREACH = "breach"


class FindScopeBreach(str, Enum):
    """Streaming find behaviour when the filter contradicts the scope."""

    EMPTY = "empty"
    ERROR = "error"


class CountScopeBreach(str, Enum):
    """Count behaviour when the filter contradicts the scope."""

    ZERO = "zero"
    ERROR = "error"


class ScopeEnforcer:
    """Applies one repository scope to filters, records and new entities.

    Example:
        >>> enforcer = ScopeEnforcer({"tenantId": "t1"})
        >>> enforcer.apply_to_filter({"status": "open", "tenantId": "t2"})
        {'status': 'open', 'tenantId': 't1'}
    """

    def __init__(self, scope: Mapping[str, Any] | None = None) -> None:
        self.scope = dict(scope or {})

    def apply_to_filter(self, caller_filter: Mapping[str, Any] | None) -> dict[str, Any]:
        return {**(caller_filter or {}), **self.scope}

    def conflicting_keys(self, caller_filter: Mapping[str, Any] | None) -> list[str]:
        """Scope keys the caller filter constrains to a different value."""
        if not caller_filter:
            return []
        return [
            key
            for key, value in self.scope.items()
            if key in caller_filter and caller_filter[key] != value
        ]

    def check(self, record: Mapping[str, Any]) -> ScopeCheck:
        for key, value in self.scope.items():
            actual = get_path(record, key)
            if actual is MISSING or actual != value:
                return ScopeCheck.BREACH
        return ScopeCheck.IN_SCOPE

    def is_in_scope(self, record: Mapping[str, Any]) -> bool:
        return self.check(record) == ScopeCheck.IN_SCOPE

    def stamp(self, entity: Mapping[str, Any]) -> dict[str, Any]:
        """Copy the scope onto a new entity.

        Raises:
            ValidationError: If the entity already carries a different scope value.
        """
        conflicts = [
            key
            for key, value in self.scope.items()
            if get_path(entity, key, value) != value
        ]
        if conflicts:
            raise ValidationError(
                f"Entity is outside the repository scope on: {', '.join(conflicts)}",
                field_name=conflicts[0],
                errors=[f"'{key}' does not match scope" for key in conflicts],
            )
        document = copy.deepcopy(dict(entity))
        for key, value in self.scope.items():
            set_path(document, key, value)
        return document

    def report_breach(self, operation: str, **context: Any) -> None:
        logger.warning(
            "Scope breach",
            extra={"operation": operation, "scope_fields": sorted(self.scope), **context},
        )
