"""
Equality lookups on tokenized fields.

Plaintext never reaches the database, so a lookup on a tokenized field
first asks the encryption service which tokens correspond to the value,
then filters on the token column. Everything else is plain equality.

Example::

    user = find_by(session, User, email="a@b.com", status="active")
    user = find_or_create_by(session, User, email="a@b.com")
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import false, select
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from pii_tokenizer.orm import coordinator_for

logger = logging.getLogger(__name__)


def tokenized_conditions(model: type, **conditions: Any) -> list[ColumnElement[bool]]:
    """
    WHERE clauses for ``conditions``, resolving tokenized fields to token lookups.

    ``None`` always compares the plain column with ``IS NULL``. A tokenized
    field that reads from its token becomes ``token_column IN (...)``, or a
    false clause when the service knows no token for the value.
    """
    policy = coordinator_for(model).policy
    clauses: list[ColumnElement[bool]] = []

    for name, value in conditions.items():
        column = getattr(model, name)
        if value is None:
            clauses.append(column.is_(None))
        elif name in policy.tokenized_fields() and policy.read_from_token:
            tokens = coordinator_for(model).client.search_tokens(value)
            if tokens:
                clauses.append(getattr(model, policy.token_field_for(name)).in_(tokens))
            else:
                logger.debug("No tokens found for lookup on %s.%s", model.__name__, name)
                clauses.append(false())
        else:
            clauses.append(column == value)

    return clauses


def find_all_by(session: Session, model: type, **conditions: Any) -> list[Any]:
    stmt = select(model).where(*tokenized_conditions(model, **conditions))
    return list(session.scalars(stmt))


def find_by(session: Session, model: type, **conditions: Any) -> Any | None:
    """First record matching ``conditions``, or None."""
    stmt = select(model).where(*tokenized_conditions(model, **conditions)).limit(1)
    return session.scalars(stmt).first()


def find_or_initialize_by(session: Session, model: type, **conditions: Any) -> Any:
    """Matching record, or a new unsaved one built from ``conditions``."""
    record = find_by(session, model, **conditions)
    if record is None:
        record = model(**conditions)
    return record


def find_or_create_by(session: Session, model: type, **conditions: Any) -> Any:
    """Matching record, or a new one built from ``conditions`` and flushed."""
    record = find_by(session, model, **conditions)
    if record is None:
        record = model(**conditions)
        session.add(record)
        session.flush()
    return record
