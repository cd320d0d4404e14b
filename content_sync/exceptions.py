"""
Custom exceptions for content synchronization.

The remote boundary raises exactly one of two exception families:

- TransportError: no well-formed response was obtained (timeout, refused
  connection, aborted request, or a body that is not the expected JSON).
- ApplicationError: a reachable backend returned a well-formed rejection.

Fallback decisions dispatch on these classes, never on message text.
"""

from __future__ import annotations

from typing import Any


class ContentSyncError(Exception):
    """Base exception for all content sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ContentSyncError):
    """Raised when settings are missing or invalid."""

    def __init__(self, setting: str, reason: str):
        super().__init__(
            f"Invalid configuration for {setting}: {reason}",
            {"setting": setting, "reason": reason},
        )
        self.setting = setting
        self.reason = reason


class RecordValidationError(ContentSyncError):
    """Raised when a content payload fails validation at the boundary."""

    def __init__(self, resource_type: str, field: str, reason: str):
        super().__init__(
            f"Invalid {resource_type} payload: {field} {reason}",
            {"resource_type": resource_type, "field": field, "reason": reason},
        )
        self.resource_type = resource_type
        self.field = field
        self.reason = reason


class RecordNotFoundError(ContentSyncError):
    """Raised when a fallback-mode update or delete targets an unknown record."""

    def __init__(self, resource_type: str, record_id: str):
        super().__init__(
            f"{resource_type} not found in fallback store: {record_id}",
            {"resource_type": resource_type, "record_id": record_id},
        )
        self.resource_type = resource_type
        self.record_id = record_id


class RemoteStoreError(ContentSyncError):
    """Base of the remote boundary sum type.

    Never raised directly; catch TransportError or ApplicationError.
    """


class TransportError(RemoteStoreError):
    """Raised when no well-formed response could be obtained."""

    def __init__(
        self,
        reason: str,
        url: str | None = None,
        cause: Exception | None = None,
        status: int | None = None,
        content_type: str | None = None,
    ):
        details: dict[str, Any] = {"reason": reason}
        if url:
            details["url"] = url
        if cause:
            details["cause"] = str(cause)
        if status is not None:
            details["status"] = status
        if content_type:
            details["content_type"] = content_type
        message = f"Remote store unreachable: {reason}"
        if url:
            message += f" ({url})"
        super().__init__(message, details)
        self.reason = reason
        self.url = url
        self.cause = cause
        self.status = status
        self.content_type = content_type


class ApplicationError(RemoteStoreError):
    """Raised when the remote store returns a well-formed error envelope."""

    def __init__(
        self,
        status: int,
        message: str | None = None,
        errors: list[Any] | None = None,
        url: str | None = None,
    ):
        self.status = status
        self.remote_message = message or f"HTTP {status}"
        self.errors = list(errors or [])
        self.url = url
        details: dict[str, Any] = {"status": status, "message": self.remote_message}
        if self.errors:
            details["errors"] = self.errors
        if url:
            details["url"] = url
        super().__init__(self.remote_message, details)

    @property
    def user_message(self) -> str:
        """Actionable message for editors, built from the envelope."""
        reasons = []
        for error in self.errors:
            if isinstance(error, dict):
                text = error.get("msg") or error.get("message")
                if text:
                    reasons.append(str(text))
            elif error:
                reasons.append(str(error))
        if reasons:
            return f"{self.remote_message}: {'; '.join(reasons)}"
        return self.remote_message

    @property
    def is_not_found(self) -> bool:
        return self.status == 404

    @property
    def is_unauthorized(self) -> bool:
        return self.status in (401, 403)


class FallbackStoreError(ContentSyncError):
    """Raised when the local fallback store cannot be read or written."""

    def __init__(self, operation: str, key: str, cause: Exception | None = None):
        details = {"operation": operation, "key": key}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Fallback store error during {operation}: {key}", details)
        self.operation = operation
        self.key = key
        self.cause = cause


class ConfirmedRecordError(ContentSyncError):
    """Raised when a fallback write would overwrite a remotely confirmed record.

    Used when fallback mode was selected explicitly; a fallback reached
    through a failed remote call re-raises that TransportError instead.
    """

    def __init__(self, operation: str, resource_type: str, record_id: str):
        super().__init__(
            f"Refusing fallback {operation} of {resource_type} {record_id}: "
            "its remote state was confirmed earlier in this session",
            {"operation": operation, "resource_type": resource_type, "record_id": record_id},
        )
        self.operation = operation
        self.resource_type = resource_type
        self.record_id = record_id


class ConsistencyWarning(UserWarning):
    """A detected but unresolved divergence between fallback and remote state.

    Logged and queued for review, never raised to callers.
    """

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
