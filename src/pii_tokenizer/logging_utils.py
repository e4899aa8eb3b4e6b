"""
PII-safe logging helpers.

Plaintext values and decrypted results must never reach a log line. The
encryption client logs every request and response through these helpers.

Usage:
    from pii_tokenizer.logging_utils import redact_payload, redact_response_body

    logger.debug("REQUEST: POST %s %s", path, redact_payload(body))
    logger.debug("RESPONSE: %d %s", status, redact_response_body(response.text))
"""

import json
import re
from typing import Any

REDACTED = "REDACTED"

# Payload keys that carry plaintext in the encryption service protocol
SENSITIVE_KEYS = frozenset({"value", "pii_field", "decrypted_value"})


def redact_payload(data: Any) -> Any:
    """
    Return a copy of ``data`` with sensitive keys replaced by ``REDACTED``.

    Walks nested dicts and lists; everything else is returned unchanged.
    """
    if isinstance(data, dict):
        return {
            k: (REDACTED if k in SENSITIVE_KEYS else redact_payload(v))
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact_payload(item) for item in data]
    return data


def redact_response_body(body: str) -> str:
    """Redact a raw JSON response body. Non-JSON bodies are not echoed."""
    try:
        parsed = json.loads(body)
    except (TypeError, ValueError):
        return "Non-JSON response"
    return json.dumps(redact_payload(parsed))


# --- PATTERNS FOR FREE-TEXT SANITIZATION ---
_PII_PATTERNS = [
    # SSN patterns
    (r'\b\d{3}-\d{2}-\d{4}\b', '[SSN-REDACTED]'),
    # Phone patterns
    (r'\(\d{3}\)\s*\d{3}-\d{4}', '[PHONE-REDACTED]'),
    (r'\b\d{3}-\d{3}-\d{4}\b', '[PHONE-REDACTED]'),
    (r'\b\d{3}\.\d{3}\.\d{4}\b', '[PHONE-REDACTED]'),
    # Email
    (r'\b[\w.+-]+@[\w.-]+\.\w+\b', '[EMAIL-REDACTED]'),
    # Credit card (16 digits with optional separators)
    (r'\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b', '[CC-REDACTED]'),
]

_COMPILED_PATTERNS = [(re.compile(p, re.IGNORECASE), r) for p, r in _PII_PATTERNS]


def sanitize_for_logging(text: str, max_length: int = 200) -> str:
    """
    Sanitize free text (error bodies, exception messages) before logging.

    Args:
        text: Input text that may contain PII
        max_length: Truncate to this length (0 for no truncation)

    Returns:
        Sanitized string safe for logging
    """
    if not text:
        return ""

    result = text
    for pattern, replacement in _COMPILED_PATTERNS:
        result = pattern.sub(replacement, result)

    if max_length > 0 and len(result) > max_length:
        result = result[:max_length] + "...[truncated]"

    return result
