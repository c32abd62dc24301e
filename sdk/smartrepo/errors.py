"""
Error types for smartrepo.

This module defines all exception types raised by the repository layer:
- SmartRepoError: Base exception
- ConfigurationError: Invalid repository configuration
- ValidationError: Malformed input or forbidden writes
- DuplicateIdError: Record id already taken
- ScopeBreachError: Collection operation reached outside the active scope
- CreateManyPartialFailure: Bulk insert that persisted only some entities

Invariants:
    - All errors inherit from SmartRepoError
    - Errors carry a stable code plus details for programmatic handling
    - Scope breach errors never include the foreign values that caused them
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class SmartRepoError(Exception):
    """Base exception for all smartrepo errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "SMARTREPO_ERROR"
        self.details = details or {}


class ConfigurationError(SmartRepoError):
    """Repository configuration is invalid.

    Raised when:
    - A bounded trace strategy has no limit
    - Managed field keys collide with each other or with the scope
    - An option is used that the configuration does not enable
    """

    def __init__(self, message: str, option: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details={"option": option},
        )
        self.option = option


class ValidationError(SmartRepoError):
    """Input validation failed.

    Raised when:
    - An update operation has neither set nor unset
    - A write targets the id, a managed field or a scope field
    - A backend's own validation rejects a document
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name, "errors": errors or []},
        )
        self.field_name = field_name
        self.errors = errors or []


class DuplicateIdError(ValidationError):
    """A record with the same id already exists."""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Record already exists: {record_id}", field_name="id")
        self.code = "DUPLICATE_ID"
        self.details["record_id"] = record_id
        self.record_id = record_id


class ScopeBreachError(SmartRepoError):
    """A collection operation asked for records outside the active scope.

    Only raised for find/count under the ``error`` policy. Point lookups
    report a breach as absence instead.

    Attributes:
        operation: Operation that detected the breach
        fields: Scope fields the caller filter contradicted
    """

    def __init__(self, operation: str, fields: List[str]) -> None:
        super().__init__(
            f"{operation} filter conflicts with scope on: {', '.join(fields)}",
            code="SCOPE_BREACH",
            details={"operation": operation, "fields": fields},
        )
        self.operation = operation
        self.fields = fields


class CreateManyPartialFailure(SmartRepoError):
    """Raised by create_many when not every entity was inserted.

    The succeeded subset is not rolled back; the caller decides whether to
    retry ``failed_ids`` or compensate for ``inserted_ids``.

    Attributes:
        inserted_ids: Ids that were persisted
        failed_ids: Ids that were not persisted
    """

    def __init__(self, inserted_ids: List[str], failed_ids: List[str]) -> None:
        total = len(inserted_ids) + len(failed_ids)
        super().__init__(
            f"create_many partially inserted {len(inserted_ids)}/{total} entities",
            code="PARTIAL_BULK_FAILURE",
            details={"inserted_ids": inserted_ids, "failed_ids": failed_ids},
        )
        self.inserted_ids = inserted_ids
        self.failed_ids = failed_ids
