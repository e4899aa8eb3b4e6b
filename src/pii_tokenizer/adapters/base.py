"""
Persistence adapter protocol.

The coordinator reads and writes record columns only through this
interface, so the same tokenization logic runs against SQLAlchemy models
(:mod:`pii_tokenizer.adapters.sqlalchemy`) and plain in-memory records
(:mod:`pii_tokenizer.adapters.memory`).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pii_tokenizer.tracker import RecordState


@runtime_checkable
class PersistenceAdapter(Protocol):
    """Protocol for record storage.

    One adapter wraps one record instance. Adapters are cheap to build;
    anything that must outlive the adapter (pending values, cache, write
    ledger) lives in the :class:`RecordState` returned by
    :meth:`tokenization_state`, which is owned by the record itself.
    """

    @property
    def instance(self) -> Any:
        """The wrapped record; passed to entity type/id callables."""
        ...

    def read_field(self, name: str) -> Any:
        """Current in-memory value of a column."""
        ...

    def write_field(self, name: str, value: Any) -> None:
        """Set a column in memory, to be persisted by the next storage write."""
        ...

    def mark_changed(self, name: str) -> None:
        """Flag a column for the next storage write even if its value is unchanged."""
        ...

    def is_new_record(self) -> bool:
        """True until the record's first storage write has completed."""
        ...

    def is_persisted(self) -> bool:
        """True once the record exists in storage."""
        ...

    def changed_since_load(self) -> set[str]:
        """Columns assigned since the record was loaded or last written."""
        ...

    def apply_targeted_update(self, updates: dict[str, Any]) -> None:
        """Write columns straight to storage, bypassing the save lifecycle.

        Only used by the post-identity pass. The in-memory record must end
        up holding the written values without being marked changed again.

        Args:
            updates: Column name to value
        """
        ...

    def has_column(self, name: str) -> bool:
        """Whether the storage schema has a column with this name."""
        ...

    def tokenization_state(self) -> RecordState:
        """Per-record tokenizer state, created on first use."""
        ...
