"""
Unified exception hierarchy for pii-tokenizer.

All exception classes live here. No per-module exception files.

Hierarchy:
    PiiTokenizerError (base)
    ├── InvalidConfigurationError
    ├── MissingTokenColumnError
    └── EncryptionServiceError
        ├── EncryptionServiceConnectivityError
        └── EncryptionServiceResponseError

A blank entity id and a partial batch response are *not* errors: both are
handled in place by the coordinator and never raise.

Usage:
    from pii_tokenizer.exceptions import EncryptionServiceError

    try:
        session.commit()
    except EncryptionServiceError as e:
        logger.error("Tokenization failed: %s", e)
"""

from __future__ import annotations

from typing import Any

# =============================================================================
# ROOT
# =============================================================================


class PiiTokenizerError(Exception):
    """
    Base exception for all pii-tokenizer errors.

    Attributes:
        message: Human-readable error description
        context: Additional context about what was being done
        details: Technical details (field names, status codes, etc.)
    """

    def __init__(
        self,
        message: str,
        context: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.context = context
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        if self.context:
            parts.append(f"Context: {self.context}")
        if self.details:
            detail_str = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
            parts.append(f"Details: {detail_str}")
        return ". ".join(parts)


# =============================================================================
# CONFIGURATION
# =============================================================================


class InvalidConfigurationError(PiiTokenizerError):
    """
    Raised when a record type's tokenization setup is invalid.

    Examples:
        - Unsupported PII type
        - Malformed field specification
        - Missing or non-callable entity id derivation
        - Encryption service URL not configured
    """

    def __init__(
        self,
        message: str,
        field_name: str | None = None,
        **kwargs: Any,
    ):
        details = kwargs.pop("details", {})
        if field_name:
            details["field"] = field_name
        super().__init__(message, details=details, **kwargs)
        self.field_name = field_name


class MissingTokenColumnError(PiiTokenizerError):
    """Raised when the storage schema lacks the token column for a field."""

    def __init__(self, column: str, **kwargs: Any):
        details = kwargs.pop("details", {})
        details["column"] = column
        super().__init__(
            f"Column '{column}' must exist for tokenization",
            details=details,
            **kwargs,
        )
        self.column = column


# =============================================================================
# ENCRYPTION SERVICE
# =============================================================================


class EncryptionServiceError(PiiTokenizerError):
    """Base class for failures talking to the encryption service."""

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        **kwargs: Any,
    ):
        details = kwargs.pop("details", {})
        if endpoint:
            details["endpoint"] = endpoint
        super().__init__(message, details=details, **kwargs)
        self.endpoint = endpoint


class EncryptionServiceConnectivityError(EncryptionServiceError):
    """The transport could not reach the service (connect failure, timeout)."""

    pass


class EncryptionServiceResponseError(EncryptionServiceError):
    """The service answered with a non-success status or an unreadable body."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        **kwargs: Any,
    ):
        details = kwargs.pop("details", {})
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details=details, **kwargs)
        self.status_code = status_code


__all__ = [
    "PiiTokenizerError",
    "InvalidConfigurationError",
    "MissingTokenColumnError",
    "EncryptionServiceError",
    "EncryptionServiceConnectivityError",
    "EncryptionServiceResponseError",
]
