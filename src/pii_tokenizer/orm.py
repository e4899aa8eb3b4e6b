"""
SQLAlchemy ORM integration.

Models opt in by mixing in :class:`Tokenizable` and calling
:func:`tokenize_pii` once after the class is defined::

    class User(Tokenizable, Base):
        __tablename__ = "users"

        id: Mapped[int] = mapped_column(primary_key=True)
        email: Mapped[str | None]
        email_token: Mapped[str | None]

    tokenize_pii(
        User,
        fields={"email": "EMAIL"},
        entity_type="customer",
        entity_id=lambda user: f"customer_{user.id}" if user.id else None,
    )

    user = User(email="a@b.com")   # routed through the tokenizer
    user.pii.email                 # "a@b.com", no service call
    session.add(user)
    session.commit()               # one encrypt call; email column stays NULL

Lifecycle wiring (registered once, at import):

- ``Session.before_flush``: pre-write pass for every new or dirty record
- mapper ``after_insert`` / ``after_update``: post-identity pass
- ``Session.after_flush_postexec``: close cycles that had no post pass
- ``Session.after_soft_rollback``: discard open cycles
- instance ``load``: reset tokenizer state; ``refresh``: drop cached plaintext
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from sqlalchemy import event, inspect as sa_inspect
from sqlalchemy.orm import Session

from pii_tokenizer.adapters.sqlalchemy import SQLAlchemyRecordAdapter
from pii_tokenizer.client import EncryptionService
from pii_tokenizer.coordinator import TokenizationCoordinator
from pii_tokenizer.exceptions import InvalidConfigurationError
from pii_tokenizer.registry import configure, validate_token_columns

logger = logging.getLogger(__name__)

# session.info key holding records with an open write cycle
_CYCLE_KEY = "pii_tokenizer_cycles"


class TokenizedFieldAccessor:
    """Plaintext view of a record's tokenized fields.

    Attribute and item access both work::

        user.pii.email
        user.pii["email"] = "b@c.com"
    """

    def __init__(self, coordinator: TokenizationCoordinator, adapter: SQLAlchemyRecordAdapter):
        object.__setattr__(self, "_coordinator", coordinator)
        object.__setattr__(self, "_adapter", adapter)

    def _check(self, name: str) -> None:
        if not self._coordinator.policy.is_tokenized(name):
            raise AttributeError(f"'{name}' is not a tokenized field")

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        self._check(name)
        return self._coordinator.resolve(self._adapter, name)

    def __setattr__(self, name: str, value: Any) -> None:
        self._check(name)
        self._coordinator.write(self._adapter, name, value)

    def __getitem__(self, name: str) -> Any:
        try:
            return self.__getattr__(name)
        except AttributeError as e:
            raise KeyError(name) from e

    def __setitem__(self, name: str, value: Any) -> None:
        try:
            self.__setattr__(name, value)
        except AttributeError as e:
            raise KeyError(name) from e

    def __dir__(self) -> list[str]:
        return self._coordinator.policy.all_field_names()

    def get_many(self, *names: str) -> dict[str, Any]:
        """Several fields at once, with at most one decrypt call."""
        for name in names:
            self._check(name)
        return self._coordinator.resolve_many(self._adapter, names or None)

    def clear_cache(self) -> None:
        self._coordinator.clear_cache(self._adapter)


class Tokenizable:
    """Mixin for mapped classes with tokenized columns."""

    # Set by tokenize_pii()
    _pii_coordinator = None

    def __init__(self, **kwargs: Any):
        coordinator = type(self)._pii_coordinator
        tokenized = {}
        if coordinator is not None:
            for name in list(kwargs):
                if coordinator.policy.is_tokenized(name):
                    tokenized[name] = kwargs.pop(name)
        super().__init__(**kwargs)
        for name, value in tokenized.items():
            self.pii[name] = value

    @property
    def pii(self) -> TokenizedFieldAccessor:
        return TokenizedFieldAccessor(coordinator_for(self), SQLAlchemyRecordAdapter(self))


def coordinator_for(model_or_instance: Any) -> TokenizationCoordinator:
    """The coordinator configured for a model class or instance."""
    model = model_or_instance if isinstance(model_or_instance, type) else type(model_or_instance)
    coordinator = getattr(model, "_pii_coordinator", None)
    if coordinator is None:
        raise InvalidConfigurationError(
            f"{model.__name__} has no tokenized fields; call tokenize_pii() first"
        )
    return coordinator


def tokenize_pii(
    model: type,
    fields: Any,
    entity_type: str | Callable[[Any], str],
    entity_id: Callable[[Any], Any],
    dual_write: bool = False,
    read_from_token: bool | None = None,
    json_fields: Mapping[str, Mapping[str, str]] | None = None,
    client: EncryptionService | None = None,
    strict: bool | None = None,
) -> TokenizationCoordinator:
    """
    Configure tokenization for a mapped model.

    Args:
        model: Mapped class that mixes in :class:`Tokenizable`
        fields: Field names, or mapping of field name to PII type
        entity_type: Entity type string, or callable taking the record
        entity_id: Callable taking the record; blank defers tokenization
        dual_write: Also keep plaintext in the plain column
        read_from_token: Decrypt on read (defaults to ``not dual_write``)
        json_fields: JSON column name to ``{key: pii_type}``
        client: Encryption service; defaults to the process-wide client
        strict: Check token columns now (defaults to
            ``settings.strict_schema_validation``); otherwise on first save

    Raises:
        InvalidConfigurationError: Invalid field specification
        MissingTokenColumnError: A token column is missing (strict mode)
    """
    if not (isinstance(model, type) and issubclass(model, Tokenizable)):
        raise InvalidConfigurationError(
            f"{getattr(model, '__name__', model)!s} must mix in Tokenizable"
        )

    policy = configure(
        fields,
        entity_type=entity_type,
        entity_id=entity_id,
        dual_write=dual_write,
        read_from_token=read_from_token,
        json_fields=json_fields,
    )

    if strict is None:
        from pii_tokenizer.config import get_settings

        strict = get_settings().strict_schema_validation

    coordinator = TokenizationCoordinator(policy, client=client)
    if strict:
        mapper = sa_inspect(model)
        validate_token_columns(policy, lambda name: name in mapper.columns)
        coordinator.mark_schema_checked()

    model._pii_coordinator = coordinator
    logger.debug(
        "Configured tokenization for %s: %s",
        model.__name__, ", ".join(policy.all_field_names()),
    )
    return coordinator


# =============================================================================
# BATCH READS
# =============================================================================


def preload_decrypted_fields(records: Iterable[Any], *fields: str) -> list[Any]:
    """
    Decrypt fields for a collection with one decrypt call per model.

    Values land in each record's cache, so later ``record.pii.<field>``
    reads make no service calls.
    """
    records = list(records)
    by_model: dict[type, list[Any]] = {}
    for record in records:
        by_model.setdefault(type(record), []).append(record)

    for model, group in by_model.items():
        coordinator = coordinator_for(model)
        coordinator.preload([SQLAlchemyRecordAdapter(r) for r in group], fields or None)
    return records


def load_decrypted(session: Session, statement, *fields: str) -> list[Any]:
    """Run a select and preload decrypted fields for every record it returns."""
    records = list(session.scalars(statement))
    return preload_decrypted_fields(records, *fields)


# =============================================================================
# LIFECYCLE LISTENERS
# =============================================================================


def _configured(obj: Any) -> TokenizationCoordinator | None:
    if isinstance(obj, Tokenizable):
        return type(obj)._pii_coordinator
    return None


@event.listens_for(Session, "before_flush")
def _before_flush(session, flush_context, instances) -> None:
    cycles = session.info.setdefault(_CYCLE_KEY, {})
    for obj in [*session.new, *session.dirty]:
        coordinator = _configured(obj)
        if coordinator is None or obj in session.deleted:
            continue
        cycles[id(obj)] = obj
        coordinator.pre_write_pass(SQLAlchemyRecordAdapter(obj))


@event.listens_for(Tokenizable, "after_insert", propagate=True)
@event.listens_for(Tokenizable, "after_update", propagate=True)
def _after_write(mapper, connection, target) -> None:
    coordinator = _configured(target)
    if coordinator is not None:
        coordinator.post_identity_pass(SQLAlchemyRecordAdapter(target, connection))


@event.listens_for(Session, "after_flush_postexec")
def _after_flush_postexec(session, flush_context) -> None:
    for obj in session.info.pop(_CYCLE_KEY, {}).values():
        _configured(obj).finish_cycle(SQLAlchemyRecordAdapter(obj))


@event.listens_for(Session, "after_soft_rollback")
def _after_soft_rollback(session, previous_transaction) -> None:
    for obj in session.info.pop(_CYCLE_KEY, {}).values():
        _configured(obj).discard_cycle(SQLAlchemyRecordAdapter(obj))


@event.listens_for(Tokenizable, "load", propagate=True)
def _on_load(target, context) -> None:
    coordinator = _configured(target)
    if coordinator is not None:
        coordinator.on_load(SQLAlchemyRecordAdapter(target))


@event.listens_for(Tokenizable, "refresh", propagate=True)
def _on_refresh(target, context, attrs) -> None:
    coordinator = _configured(target)
    if coordinator is None:
        return
    if attrs is not None:
        policy = coordinator.policy
        watched = set(policy.all_field_names()) | set(policy.token_columns())
        if not watched.intersection(attrs):
            return
    # Unflushed writes survive a refresh of expired attributes; cached values do not
    coordinator.clear_cache(SQLAlchemyRecordAdapter(target))
