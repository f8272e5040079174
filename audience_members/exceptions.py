"""
Custom exceptions for audience member storage.

All aggregator, filter and storage implementations should raise these
exceptions for consistent error handling across backends.
"""

from __future__ import annotations

from typing import Any


class AudienceError(Exception):
    """Base exception for all audience member errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MemberNotFoundError(AudienceError):
    """Raised when a member is not found."""

    def __init__(self, seller_id: int, email: str):
        super().__init__(
            f"Audience member not found: {email} (seller={seller_id})",
            {"seller_id": seller_id, "email": email},
        )
        self.seller_id = seller_id
        self.email = email


class MemberValidationError(AudienceError):
    """Raised when member identity validation fails (e.g., malformed email)."""

    def __init__(self, field: str, reason: str, value: Any = None):
        details: dict[str, Any] = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Invalid member {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class FactValidationError(AudienceError):
    """Raised when a fact is missing a required key or has a malformed value.

    The member document is never modified when this is raised.
    """

    def __init__(self, category: str, field: str, reason: str = "is required"):
        super().__init__(
            f"Invalid {category} fact: '{field}' {reason}",
            {"category": category, "field": field, "reason": reason},
        )
        self.category = category
        self.field = field
        self.reason = reason


class FilterValidationError(AudienceError):
    """Raised when filter params are malformed.

    Raised before any storage access.
    """

    def __init__(self, param: str, reason: str, value: Any = None):
        details: dict[str, Any] = {"param": param, "reason": reason}
        if value is not None:
            details["value"] = repr(value)
        super().__init__(f"Invalid filter param {param}: {reason}", details)
        self.param = param
        self.reason = reason
        self.value = value


class ConcurrentUpdateError(AudienceError):
    """Raised when a member was modified by another writer since it was read."""

    def __init__(self, seller_id: int, email: str, expected_version: int):
        super().__init__(
            f"Concurrent update on member {email} (seller={seller_id}), "
            f"expected version {expected_version}",
            {"seller_id": seller_id, "email": email, "expected_version": expected_version},
        )
        self.seller_id = seller_id
        self.email = email
        self.expected_version = expected_version


class StorageIOError(AudienceError):
    """Raised when a storage I/O operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class StorageConnectionError(AudienceError):
    """Raised when connection to the member store fails.

    Note: Named StorageConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Connection failed to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class FactSourceError(AudienceError):
    """Raised when ground-truth facts cannot be read for a contact."""

    def __init__(self, seller_id: int, email: str | None, cause: Exception | None = None):
        details: dict[str, Any] = {"seller_id": seller_id}
        if email:
            details["email"] = email
        if cause:
            details["cause"] = str(cause)
        target = email or f"seller {seller_id}"
        super().__init__(f"Failed to read facts for {target}", details)
        self.seller_id = seller_id
        self.email = email
        self.cause = cause
