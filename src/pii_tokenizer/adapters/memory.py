"""
Dict-backed record for use without an ORM.

``InMemoryRecord`` implements :class:`PersistenceAdapter` itself and keeps
a separate ``stored`` snapshot that stands in for the database row, so the
effect of a save (what actually reached storage) can be inspected apart
from what the record holds in memory.

Example::

    record = InMemoryRecord(["id", "email", "email_token"], id_factory=itertools.count(1).__next__)
    coordinator.write(record, "email", "a@b.com")
    record.save(coordinator)
    record.stored["email"]        # None
    record.stored["email_token"]  # token
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any

from pii_tokenizer.tracker import RecordState

if TYPE_CHECKING:
    from pii_tokenizer.coordinator import TokenizationCoordinator


class InMemoryRecord:
    """A record whose columns live in a dict."""

    def __init__(
        self,
        columns: Iterable[str],
        values: Mapping[str, Any] | None = None,
        id_factory: Callable[[], Any] | None = None,
        id_column: str = "id",
    ):
        self.__dict__["_columns"] = set(columns) | {id_column}
        self.__dict__["_values"] = {name: None for name in self._columns}
        self.__dict__["_changed"] = set()
        self.__dict__["_persisted"] = False
        self.__dict__["_state"] = RecordState()
        self.__dict__["id_factory"] = id_factory
        self.__dict__["id_column"] = id_column
        self.__dict__["stored"] = {}
        self.__dict__["targeted_updates"] = []

        for name, value in (values or {}).items():
            self.write_field(name, value)
            self._changed.add(name)

    # Attribute access to columns, for entity id callables
    def __getattr__(self, name: str) -> Any:
        values = self.__dict__.get("_values", {})
        if name in values:
            return values[name]
        raise AttributeError(name)

    def __setattr__(self, name: str, value: Any) -> None:
        if name in self._columns:
            self.write_field(name, value)
            self._changed.add(name)
        else:
            super().__setattr__(name, value)

    def __repr__(self) -> str:
        return f"InMemoryRecord({self.id_column}={self._values.get(self.id_column)!r})"

    # PersistenceAdapter
    @property
    def instance(self) -> InMemoryRecord:
        return self

    def read_field(self, name: str) -> Any:
        if name not in self._columns:
            raise KeyError(name)
        return self._values[name]

    def write_field(self, name: str, value: Any) -> None:
        if name not in self._columns:
            raise KeyError(name)
        self._values[name] = value

    def mark_changed(self, name: str) -> None:
        self._changed.add(name)

    def is_new_record(self) -> bool:
        return not self._persisted

    def is_persisted(self) -> bool:
        return self._persisted

    def changed_since_load(self) -> set[str]:
        return set(self._changed)

    def apply_targeted_update(self, updates: dict[str, Any]) -> None:
        self._values.update(updates)
        self.stored.update(updates)
        self.targeted_updates.append(dict(updates))

    def has_column(self, name: str) -> bool:
        return name in self._columns

    def tokenization_state(self) -> RecordState:
        return self._state

    # Storage lifecycle
    def persist(self) -> None:
        """Write every column to ``stored``, assigning an id on first write."""
        if self._values[self.id_column] is None and self.id_factory is not None:
            self._values[self.id_column] = self.id_factory()
        self.stored.clear()
        self.stored.update(self._values)
        self.__dict__["_persisted"] = True

    def save(self, coordinator: TokenizationCoordinator) -> InMemoryRecord:
        """Run a full write cycle: pre-write pass, persist, post-identity pass."""
        try:
            coordinator.pre_write_pass(self)
            self.persist()
            coordinator.post_identity_pass(self)
        except Exception:
            coordinator.discard_cycle(self)
            raise
        self._changed.clear()
        return self

    def reload(self, coordinator: TokenizationCoordinator | None = None) -> InMemoryRecord:
        """Replace in-memory values with ``stored`` and drop tokenizer state."""
        self._values.update(self.stored)
        self._changed.clear()
        if coordinator is not None:
            coordinator.on_load(self)
        else:
            self._state.reset()
        return self
