"""
SQLAlchemy ORM adapter.

Wraps one mapped instance. Change tracking uses attribute history, so a
column counts as changed from assignment until the flush that writes it.
Targeted updates go straight to the table on the flush connection and are
then mirrored into the instance as committed values, leaving the session
with nothing further to flush.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import and_, inspect as sa_inspect
from sqlalchemy.engine import Connection
from sqlalchemy.orm import object_session
from sqlalchemy.orm.attributes import flag_modified, set_committed_value

from pii_tokenizer.tracker import RecordState

# Key under which the tokenizer state is kept in the instance __dict__
STATE_ATTR = "_pii_state"


class SQLAlchemyRecordAdapter:
    """PersistenceAdapter over a mapped instance."""

    def __init__(self, instance: Any, connection: Connection | None = None):
        self._instance = instance
        self._connection = connection

    @property
    def instance(self) -> Any:
        return self._instance

    @property
    def _state(self):
        return sa_inspect(self._instance)

    def read_field(self, name: str) -> Any:
        return getattr(self._instance, name)

    def write_field(self, name: str, value: Any) -> None:
        setattr(self._instance, name, value)

    def mark_changed(self, name: str) -> None:
        state = self._state
        if name not in state.dict:
            # Loads expired attributes; unset ones on new objects stay absent
            value = getattr(self._instance, name)
            if name not in state.dict:
                setattr(self._instance, name, value)
                return
        flag_modified(self._instance, name)

    def is_new_record(self) -> bool:
        state = self._state
        return state.transient or state.pending

    def is_persisted(self) -> bool:
        return self._state.key is not None

    def changed_since_load(self) -> set[str]:
        state = self._state
        return {
            attr.key
            for attr in state.attrs
            if attr.key in state.mapper.columns and attr.history.has_changes()
        }

    def apply_targeted_update(self, updates: dict[str, Any]) -> None:
        if not updates:
            return
        mapper = self._state.mapper
        table = mapper.local_table
        pk_values = mapper.primary_key_from_instance(self._instance)
        criteria = and_(*[col == value for col, value in zip(mapper.primary_key, pk_values)])
        values = {mapper.columns[name]: value for name, value in updates.items()}

        connection = self._connection
        if connection is None:
            connection = object_session(self._instance).connection()
        connection.execute(table.update().where(criteria).values(values))

        for name, value in updates.items():
            set_committed_value(self._instance, name, value)

    def has_column(self, name: str) -> bool:
        return name in sa_inspect(type(self._instance)).columns

    def tokenization_state(self) -> RecordState:
        return self._instance.__dict__.setdefault(STATE_ATTR, RecordState())
