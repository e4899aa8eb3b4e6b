"""
pii-tokenizer - Field-level PII tokenization for SQLAlchemy models

This package provides:
- Registry: per-model tokenization policy (fields, PII types, entity scoping)
- Coordinator: batched encrypt/decrypt around each write cycle and read
- ORM: SQLAlchemy mixin, lifecycle wiring and tokenized lookups
- Client: HTTP client for the encryption/tokenization service
"""

from pii_tokenizer.client import (
    EncryptionClient,
    EncryptionService,
    TokenizationRequest,
    get_encryption_client,
    reset_encryption_client,
    set_encryption_client,
)
from pii_tokenizer.coordinator import TokenizationCoordinator
from pii_tokenizer.exceptions import (
    EncryptionServiceConnectivityError,
    EncryptionServiceError,
    EncryptionServiceResponseError,
    InvalidConfigurationError,
    MissingTokenColumnError,
    PiiTokenizerError,
)
from pii_tokenizer.logging import setup_logging
from pii_tokenizer.pii_types import PiiType
from pii_tokenizer.registry import TokenizationPolicy, configure

__version__ = "1.0.0"

__all__ = [
    "EncryptionClient",
    "EncryptionService",
    "TokenizationRequest",
    "get_encryption_client",
    "set_encryption_client",
    "reset_encryption_client",
    "TokenizationCoordinator",
    "TokenizationPolicy",
    "configure",
    "PiiType",
    "setup_logging",
    "PiiTokenizerError",
    "InvalidConfigurationError",
    "MissingTokenColumnError",
    "EncryptionServiceError",
    "EncryptionServiceConnectivityError",
    "EncryptionServiceResponseError",
]
