"""
Shared fixtures for pii-tokenizer tests.

Provides a recording fake encryption service, in-memory record factories
and SQLite-backed SQLAlchemy models covering each tokenization mode.
"""

import hashlib
import itertools

import pytest
from sqlalchemy import JSON, String, create_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from pii_tokenizer.adapters.memory import InMemoryRecord
from pii_tokenizer.client import reset_encryption_client, set_encryption_client
from pii_tokenizer.config import get_settings
from pii_tokenizer.orm import Tokenizable, tokenize_pii


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: exercises the SQLAlchemy integration against SQLite"
    )


# =============================================================================
# FAKE ENCRYPTION SERVICE
# =============================================================================


class FakeEncryptionService:
    """In-process stand-in for the encryption service that records every call."""

    def __init__(self):
        self.encrypt_calls = []
        self.decrypt_calls = []
        self.search_calls = []
        self.vault = {}
        # Values left out of encrypt responses / tokens left out of decrypt responses
        self.omit_values = set()
        self.undecryptable = set()
        self.fail_with = None

    @staticmethod
    def token_for(item):
        digest = hashlib.sha1(item.composite_key.encode()).hexdigest()[:16]
        return f"tok_{digest}"

    def encrypt_batch(self, items):
        items = list(items)
        self.encrypt_calls.append(items)
        if self.fail_with is not None:
            raise self.fail_with
        result = {}
        for item in items:
            if item.value in self.omit_values:
                continue
            token = self.token_for(item)
            self.vault[token] = item.value
            result[item.composite_key] = token
        return result

    def decrypt_batch(self, tokens):
        if isinstance(tokens, str):
            tokens = [tokens]
        tokens = list(tokens or [])
        self.decrypt_calls.append(tokens)
        if self.fail_with is not None:
            raise self.fail_with
        return {
            t: self.vault[t]
            for t in tokens
            if t in self.vault and t not in self.undecryptable
        }

    def search_tokens(self, value):
        self.search_calls.append(value)
        return [t for t, v in self.vault.items() if v == value]

    @property
    def encrypt_count(self):
        return len(self.encrypt_calls)

    @property
    def decrypt_count(self):
        return len(self.decrypt_calls)

    def reset_calls(self):
        self.encrypt_calls.clear()
        self.decrypt_calls.clear()
        self.search_calls.clear()


@pytest.fixture
def fake_service():
    return FakeEncryptionService()


@pytest.fixture(autouse=True)
def default_client(fake_service):
    """Route every coordinator without an explicit client to the fake service."""
    get_settings.cache_clear()
    set_encryption_client(fake_service)
    yield fake_service
    reset_encryption_client()
    get_settings.cache_clear()


# =============================================================================
# IN-MEMORY RECORDS
# =============================================================================


def columns_for(policy, extra=("id",)):
    columns = list(extra)
    for name in policy.all_field_names():
        columns += [name, policy.token_field_for(name)]
    return columns


@pytest.fixture
def make_record():
    """Factory for InMemoryRecords whose ids come from a shared counter."""
    counter = itertools.count(1)

    def _make(policy, values=None, with_id_factory=True, extra=("id",)):
        return InMemoryRecord(
            columns_for(policy, extra),
            values=values,
            id_factory=counter.__next__ if with_id_factory else None,
        )

    return _make


# =============================================================================
# SQLALCHEMY MODELS
# =============================================================================


class Base(DeclarativeBase):
    pass


class User(Tokenizable, Base):
    """Token-only storage; entity id needs the database-assigned id."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    first_name: Mapped[str | None] = mapped_column(String(100))
    first_name_token: Mapped[str | None] = mapped_column(String(100))
    last_name: Mapped[str | None] = mapped_column(String(100))
    last_name_token: Mapped[str | None] = mapped_column(String(100))
    email: Mapped[str | None] = mapped_column(String(255))
    email_token: Mapped[str | None] = mapped_column(String(100))
    status: Mapped[str | None] = mapped_column(String(20))


class Contact(Tokenizable, Base):
    """Dual-write, read from the plain column; entity id supplied by the caller."""

    __tablename__ = "contacts"

    id: Mapped[int] = mapped_column(primary_key=True)
    external_id: Mapped[str | None] = mapped_column(String(50))
    email: Mapped[str | None] = mapped_column(String(255))
    email_token: Mapped[str | None] = mapped_column(String(100))
    phone: Mapped[str | None] = mapped_column(String(50))
    phone_token: Mapped[str | None] = mapped_column(String(100))


class Profile(Tokenizable, Base):
    """Dual-write, read from token, with a JSON column."""

    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(primary_key=True)
    ref: Mapped[str | None] = mapped_column(String(50))
    name: Mapped[str | None] = mapped_column(String(100))
    name_token: Mapped[str | None] = mapped_column(String(100))
    details: Mapped[dict | None] = mapped_column(JSON)
    details_token: Mapped[dict | None] = mapped_column(JSON)


tokenize_pii(
    User,
    fields={"first_name": "FIRST_NAME", "last_name": "LAST_NAME", "email": "EMAIL"},
    entity_type="customer",
    entity_id=lambda user: f"customer_{user.id}" if user.id else None,
    strict=True,
)

tokenize_pii(
    Contact,
    fields=["email", "phone"],
    entity_type="contact",
    entity_id=lambda contact: contact.external_id,
    dual_write=True,
    read_from_token=False,
    strict=True,
)

tokenize_pii(
    Profile,
    fields={"name": "NAME"},
    json_fields={"details": {"ssn": "SSN", "phone": "PHONE"}},
    entity_type=lambda profile: "profile",
    entity_id=lambda profile: profile.ref,
    dual_write=True,
    read_from_token=True,
    strict=True,
)


@pytest.fixture
def engine():
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session
