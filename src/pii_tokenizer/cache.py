"""
Per-record cache of decrypted values.

A cached ``None`` is a hit: the field is known to be empty and must not be
decrypted again. Use :meth:`DecryptionCache.lookup` to tell the two apart.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

_MISSING = object()


class DecryptionCache:
    """Map of field (or ``field.key`` for JSON keys) to resolved plaintext."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    def lookup(self, key: str) -> tuple[bool, Any]:
        """Return ``(hit, value)``."""
        value = self._values.get(key, _MISSING)
        if value is _MISSING:
            return False, None
        return True, value

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def store(self, key: str, value: Any) -> None:
        self._values[key] = value

    def update(self, values: Mapping[str, Any]) -> None:
        self._values.update(values)

    def invalidate(self, keys: str | Iterable[str]) -> None:
        if isinstance(keys, str):
            keys = [keys]
        for key in keys:
            self._values.pop(key, None)

    def clear(self) -> None:
        self._values.clear()

    def is_empty(self) -> bool:
        return not self._values

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        # Keys only; values are plaintext
        return f"DecryptionCache(keys={sorted(self._values)})"
