"""
Per-record change tracking for tokenized fields.

Each record owns one :class:`RecordState` (created lazily by its
persistence adapter) holding:

- a :class:`FieldState` per tokenized field (pending plaintext, nulled flag)
- the :class:`DecryptionCache`
- the :class:`WriteLedger` of the write cycle in progress, if any

:class:`ChangeTracker` is a thin view binding a policy, a record adapter
and that state together. It decides which fields need tokenization; it
never talks to the encryption service.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pii_tokenizer.cache import DecryptionCache

if TYPE_CHECKING:
    from pii_tokenizer.adapters.base import PersistenceAdapter
    from pii_tokenizer.registry import TokenizationPolicy

# Marks "no pending value"; None is a legitimate pending value for nothing
NOTHING = object()


@dataclass
class FieldState:
    """In-memory state of one tokenized field on one record."""

    explicitly_nulled: bool = False
    pending: Any = NOTHING

    @property
    def has_pending(self) -> bool:
        return self.pending is not NOTHING

    def clear_pending(self) -> None:
        self.pending = NOTHING


@dataclass
class WriteLedger:
    """
    Bookkeeping for one write cycle (pre-write pass through post-identity pass).

    Attributes:
        processed_fields: Fields tokenized or cleared during this cycle
        skipped_fields: Fields the encryption service left out of its answer
        settled: Plaintext to move into the cache when the cycle completes
        pending_storage_updates: Column writes not yet applied to storage
        deferred: The pre-write pass ran without an entity id
    """

    processed_fields: set[str] = field(default_factory=set)
    skipped_fields: set[str] = field(default_factory=set)
    settled: dict[str, Any] = field(default_factory=dict)
    pending_storage_updates: dict[str, Any] = field(default_factory=dict)
    deferred: bool = False

    def is_done(self, name: str) -> bool:
        return name in self.processed_fields or name in self.skipped_fields

    def reopen(self, name: str) -> None:
        self.processed_fields.discard(name)
        self.skipped_fields.discard(name)
        self.settled.pop(name, None)


class RecordState:
    """Everything the tokenizer keeps on a single record instance."""

    def __init__(self) -> None:
        self.fields: dict[str, FieldState] = {}
        self.cache = DecryptionCache()
        self.ledger: WriteLedger | None = None

    def field(self, name: str) -> FieldState:
        return self.fields.setdefault(name, FieldState())

    def begin_cycle(self) -> WriteLedger:
        if self.ledger is None:
            self.ledger = WriteLedger()
        return self.ledger

    def end_cycle(self) -> None:
        self.ledger = None

    def reset(self) -> None:
        """Forget everything; used when the record is (re)loaded from storage."""
        self.fields.clear()
        self.cache.clear()
        self.ledger = None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def normalize_plaintext(spec, value: Any) -> Any:
    """
    Plaintext in the form the encryption service hands back: strings.

    Scalars become ``str``. For JSON fields only the tokenized keys are
    converted; other keys keep their type since they are stored as is.
    None and ``""`` are left alone.
    """
    if value is None:
        return None
    if not spec.is_json:
        return value if isinstance(value, str) else str(value)
    if not isinstance(value, Mapping):
        return value
    document = dict(value)
    for key in spec.keys:
        item = document.get(key)
        if item is not None and not isinstance(item, str):
            document[key] = str(item)
    return document


class ChangeTracker:
    """Decides, per field, whether a record needs (re)tokenization."""

    def __init__(self, policy: TokenizationPolicy, record: PersistenceAdapter):
        self.policy = policy
        self.record = record
        self.state = record.tokenization_state()

    def _cache_keys(self, name: str) -> list[str]:
        spec = self.policy.any_field(name)
        if spec.is_json:
            return [spec.cache_key(key) for key in spec.keys]
        return [name]

    # Writes
    def mark_written(self, name: str, value: Any) -> None:
        """Record an in-memory assignment of plaintext to ``name``."""
        if value is None:
            self.mark_nulled(name)
            return

        spec = self.policy.any_field(name)
        if spec.is_json:
            if not isinstance(value, Mapping):
                raise TypeError(
                    f"JSON field '{name}' expects a mapping, got {type(value).__name__}"
                )
        value = normalize_plaintext(spec, value)

        if self.policy.dual_write:
            self.record.write_field(name, value)
            self.record.mark_changed(name)
        self.record.mark_changed(spec.token_field)

        fs = self.state.field(name)
        fs.pending = value
        fs.explicitly_nulled = False
        self.state.cache.invalidate(self._cache_keys(name))

        if self.state.ledger is not None:
            self.state.ledger.reopen(name)

    def mark_nulled(self, name: str) -> None:
        """Record an explicit clear; the token is dropped right away."""
        spec = self.policy.any_field(name)
        fs = self.state.field(name)
        fs.explicitly_nulled = True
        fs.clear_pending()

        self.record.write_field(spec.token_field, None)
        self.record.mark_changed(spec.token_field)
        if self.policy.dual_write or self.record.read_field(name) is not None:
            self.record.write_field(name, None)
            self.record.mark_changed(name)

        if spec.is_json:
            self.state.cache.invalidate(self._cache_keys(name))
        else:
            self.state.cache.store(name, None)

        if self.state.ledger is not None:
            self.state.ledger.reopen(name)

    def stage(self, name: str, value: Any) -> None:
        """Hold ``value`` as pending unless something is pending already."""
        fs = self.state.field(name)
        if not fs.has_pending and value is not None:
            fs.pending = value

    def settle(self, name: str, value: Any) -> None:
        """End-of-cycle transition: pending plaintext becomes a cached value."""
        fs = self.state.field(name)
        fs.clear_pending()
        fs.explicitly_nulled = False

        spec = self.policy.any_field(name)
        if spec.is_json:
            document = value or {}
            for key in spec.keys:
                self.state.cache.store(spec.cache_key(key), document.get(key))
        else:
            self.state.cache.store(name, value)

    # Queries
    def has_durable_token(self, name: str) -> bool:
        token = self.record.read_field(self.policy.token_field_for(name))
        return not _is_blank(token)

    def is_dirty(self, name: str, changed: set[str] | None = None) -> bool:
        fs = self.state.fields.get(name)
        if fs is not None and (fs.has_pending or fs.explicitly_nulled):
            return True
        if changed is None:
            changed = self.record.changed_since_load()
        return name in changed or self.policy.token_field_for(name) in changed

    def any_dirty(self) -> bool:
        changed = self.record.changed_since_load()
        return any(self.is_dirty(name, changed) for name in self.policy.all_field_names())

    def all_tokens_present(self) -> bool:
        return all(self.has_durable_token(name) for name in self.policy.all_field_names())

    def needs_tokenization(self, name: str, changed: set[str] | None = None) -> bool:
        return (
            self.record.is_new_record()
            or self.is_dirty(name, changed)
            or not self.has_durable_token(name)
        )

    def staged_value(self, name: str) -> Any:
        """The plaintext a write pass should tokenize for ``name``."""
        fs = self.state.fields.get(name)
        if fs is not None and fs.has_pending:
            return fs.pending

        plain = self.record.read_field(name)
        if fs is not None and fs.explicitly_nulled:
            if plain is None:
                return None
            # Plain column filled in after the clear
            fs.explicitly_nulled = False
        return plain

    def unsaved_value(self, name: str, changed: set[str]) -> tuple[bool, Any]:
        """
        In-memory plaintext not yet backed by a settled token.

        Returns ``(known, value)``. Covers explicit clears, pending writes,
        and direct assignments to the plain column since the last load.
        """
        fs = self.state.fields.get(name)
        if fs is not None:
            if fs.explicitly_nulled:
                return True, None
            if fs.has_pending:
                return True, fs.pending
        if name in changed:
            plain = self.record.read_field(name)
            if plain is not None:
                return True, normalize_plaintext(self.policy.any_field(name), plain)
        return False, None
