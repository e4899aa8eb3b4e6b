"""
PII type vocabulary.

Every tokenized field carries a PII type that the encryption service uses
to scope the token. The vocabulary is closed: configuration rejects any
type that is neither built in nor declared through
``TokenizerSettings.custom_pii_types``.
"""

from enum import Enum
from typing import FrozenSet, Iterable, Optional

__all__ = [
    "PiiType",
    "BUILTIN_PII_TYPES",
    "normalize_pii_type",
    "supported_pii_types",
    "is_supported_pii_type",
]


class PiiType(str, Enum):
    """Built-in PII categories understood by the encryption service."""

    # --- IDENTITY ---
    NAME = "NAME"
    FIRST_NAME = "FIRST_NAME"
    LAST_NAME = "LAST_NAME"
    DATE_OF_BIRTH = "DATE_OF_BIRTH"

    # --- CONTACT ---
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    ADDRESS = "ADDRESS"
    URL = "URL"

    # --- GOVERNMENT / FINANCIAL ---
    SSN = "SSN"
    NATIONAL_ID = "NATIONAL_ID"
    PASSPORT = "PASSPORT"
    BANK_ACCOUNT = "BANK_ACCOUNT"


BUILTIN_PII_TYPES: FrozenSet[str] = frozenset(t.value for t in PiiType)


def normalize_pii_type(pii_type) -> str:
    """Canonical form: stripped, upper-case string."""
    if isinstance(pii_type, PiiType):
        return pii_type.value
    return str(pii_type).strip().upper()


def supported_pii_types(extra: Optional[Iterable[str]] = None) -> FrozenSet[str]:
    """Built-in vocabulary plus any custom types."""
    if not extra:
        return BUILTIN_PII_TYPES
    return BUILTIN_PII_TYPES | frozenset(normalize_pii_type(t) for t in extra)


def is_supported_pii_type(pii_type, extra: Optional[Iterable[str]] = None) -> bool:
    if pii_type is None:
        return False
    return normalize_pii_type(pii_type) in supported_pii_types(extra)
