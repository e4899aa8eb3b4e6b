"""
Field registry: per-model tokenization configuration.

``configure()`` validates a field specification once and returns an
immutable :class:`TokenizationPolicy`. Everything downstream (tracker,
coordinator, ORM integration) reads the policy and never mutates it;
reconfiguring a model replaces the policy wholesale.

Example::

    policy = configure(
        fields={"email": "EMAIL", "first_name": "FIRST_NAME"},
        entity_type="customer",
        entity_id=lambda record: f"customer_{record.id}",
    )
    policy.token_field_for("email")  # "email_token"
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from pii_tokenizer.exceptions import InvalidConfigurationError, MissingTokenColumnError
from pii_tokenizer.pii_types import normalize_pii_type, supported_pii_types

logger = logging.getLogger(__name__)

TOKEN_SUFFIX = "_token"

EntityType = str | Callable[[Any], str]
EntityId = Callable[[Any], Any]


@dataclass(frozen=True)
class TokenizedField:
    """A scalar field whose plaintext is stored as a token."""

    name: str
    pii_type: str

    is_json = False

    @property
    def token_field(self) -> str:
        return f"{self.name}{TOKEN_SUFFIX}"


@dataclass(frozen=True)
class JsonTokenizedField:
    """
    A JSON (dict) column with selected keys tokenized.

    The token column holds a copy of the whole document with the tokenized
    keys replaced by tokens; every other key is copied verbatim.
    """

    name: str
    key_types: tuple[tuple[str, str], ...]

    is_json = True

    @property
    def token_field(self) -> str:
        return f"{self.name}{TOKEN_SUFFIX}"

    @property
    def keys(self) -> dict[str, str]:
        return dict(self.key_types)

    def pii_type_for(self, key: str) -> str:
        return self.keys[key]

    def cache_key(self, key: str) -> str:
        return f"{self.name}.{key}"


@dataclass(frozen=True)
class TokenizationPolicy:
    """Immutable tokenization configuration for one model."""

    fields: tuple[TokenizedField, ...]
    json_fields: tuple[JsonTokenizedField, ...]
    entity_type: EntityType
    entity_id: EntityId
    dual_write: bool = False
    read_from_token: bool = True

    def tokenized_fields(self) -> list[str]:
        """Names of the scalar tokenized fields, in declaration order."""
        return [f.name for f in self.fields]

    def json_field_names(self) -> list[str]:
        return [f.name for f in self.json_fields]

    def all_field_names(self) -> list[str]:
        return self.tokenized_fields() + self.json_field_names()

    def field(self, name: str) -> TokenizedField:
        for f in self.fields:
            if f.name == name:
                return f
        raise KeyError(name)

    def json_field(self, name: str) -> JsonTokenizedField:
        for f in self.json_fields:
            if f.name == name:
                return f
        raise KeyError(name)

    def any_field(self, name: str) -> TokenizedField | JsonTokenizedField:
        try:
            return self.field(name)
        except KeyError:
            return self.json_field(name)

    def is_tokenized(self, name: str) -> bool:
        return name in self.all_field_names()

    def token_field_for(self, name: str) -> str:
        return self.any_field(name).token_field

    def token_columns(self) -> list[str]:
        return [f.token_field for f in (*self.fields, *self.json_fields)]


def _field_pairs(fields: Any) -> list[tuple[Any, Any]]:
    """Normalize a field spec into ``(name, pii_type)`` pairs."""
    if fields is None:
        return []
    if isinstance(fields, Mapping):
        return list(fields.items())
    if isinstance(fields, str):
        # A bare string is almost certainly a mistake for ["name"]
        raise InvalidConfigurationError(
            "Tokenized fields must be a list of names or a mapping of name to PII type",
            field_name=fields,
        )
    if isinstance(fields, Iterable):
        pairs = []
        for entry in fields:
            if not isinstance(entry, str):
                raise InvalidConfigurationError(
                    f"Invalid field specification: {entry!r}",
                )
            # The PII type defaults to the upper-cased field name
            pairs.append((entry, entry.upper()))
        return pairs
    raise InvalidConfigurationError(f"Invalid field specification: {fields!r}")


def _check_name(name: Any, seen: set[str]) -> str:
    if not isinstance(name, str) or not name.isidentifier():
        raise InvalidConfigurationError(f"Invalid field name: {name!r}")
    if name in seen:
        raise InvalidConfigurationError(
            f"Field '{name}' is configured more than once", field_name=name
        )
    seen.add(name)
    return name


def _check_pii_type(name: str, pii_type: Any, allowed: frozenset[str]) -> str:
    if pii_type is None or not str(pii_type).strip():
        raise InvalidConfigurationError(
            f"Field '{name}' has no PII type", field_name=name
        )
    normalized = normalize_pii_type(pii_type)
    if normalized not in allowed:
        raise InvalidConfigurationError(
            f"Unsupported PII type '{normalized}' for field '{name}'. "
            f"Supported types: {', '.join(sorted(allowed))}",
            field_name=name,
        )
    return normalized


def configure(
    fields: Any,
    entity_type: EntityType,
    entity_id: EntityId,
    dual_write: bool = False,
    read_from_token: bool | None = None,
    json_fields: Mapping[str, Mapping[str, str]] | None = None,
    extra_pii_types: Iterable[str] | None = None,
) -> TokenizationPolicy:
    """
    Validate a field specification and build the model's policy.

    Args:
        fields: List of field names (PII type = upper-cased name) or a
            mapping of field name to PII type.
        entity_type: Entity type string, or a callable taking the record.
        entity_id: Callable taking the record and returning its entity id.
            A blank result postpones tokenization until one is available.
        dual_write: Write both the plain and the token column.
        read_from_token: Resolve reads by decrypting the token column.
            Defaults to ``not dual_write``.
        json_fields: Mapping of JSON column name to ``{key: pii_type}``.
        extra_pii_types: Additional accepted PII types. Defaults to
            ``TokenizerSettings.custom_pii_types``.

    Raises:
        InvalidConfigurationError: If any part of the specification is invalid.
    """
    if extra_pii_types is None:
        from pii_tokenizer.config import get_settings

        extra_pii_types = get_settings().custom_pii_types
    allowed = supported_pii_types(extra_pii_types)

    seen: set[str] = set()
    scalar: list[TokenizedField] = []
    for name, pii_type in _field_pairs(fields):
        name = _check_name(name, seen)
        scalar.append(TokenizedField(name, _check_pii_type(name, pii_type, allowed)))

    documents: list[JsonTokenizedField] = []
    if json_fields is not None and not isinstance(json_fields, Mapping):
        raise InvalidConfigurationError(
            "json_fields must be a mapping of column name to {key: pii_type}"
        )
    for name, key_map in (json_fields or {}).items():
        name = _check_name(name, seen)
        if not isinstance(key_map, Mapping) or not key_map:
            raise InvalidConfigurationError(
                f"JSON field '{name}' needs a non-empty mapping of key to PII type",
                field_name=name,
            )
        key_types = []
        for key, pii_type in key_map.items():
            if not isinstance(key, str) or not key:
                raise InvalidConfigurationError(
                    f"Invalid key {key!r} for JSON field '{name}'", field_name=name
                )
            key_types.append((key, _check_pii_type(f"{name}.{key}", pii_type, allowed)))
        documents.append(JsonTokenizedField(name, tuple(key_types)))

    if not scalar and not documents:
        raise InvalidConfigurationError("At least one tokenized field is required")

    if isinstance(entity_type, str):
        if not entity_type.strip():
            raise InvalidConfigurationError("entity_type must not be blank")
    elif not callable(entity_type):
        raise InvalidConfigurationError(
            "entity_type must be a string or a callable taking the record"
        )

    if entity_id is None:
        raise InvalidConfigurationError("entity_id is required")
    if not callable(entity_id):
        raise InvalidConfigurationError(
            "entity_id must be a callable taking the record"
        )

    dual_write = bool(dual_write)
    read_from_token = (not dual_write) if read_from_token is None else bool(read_from_token)

    if not dual_write and not read_from_token:
        logger.warning(
            "Tokenization configured with dual_write=False and read_from_token=False: "
            "the plain column is cleared on save and reads return None"
        )

    return TokenizationPolicy(
        fields=tuple(scalar),
        json_fields=tuple(documents),
        entity_type=entity_type,
        entity_id=entity_id,
        dual_write=dual_write,
        read_from_token=read_from_token,
    )


def validate_token_columns(
    policy: TokenizationPolicy, has_column: Callable[[str], bool]
) -> None:
    """Raise MissingTokenColumnError for the first token column that does not exist."""
    for column in policy.token_columns():
        if not has_column(column):
            raise MissingTokenColumnError(column)
