"""
Tokenization coordinator.

Drives the write and read paths for one model's policy:

Write cycle::

    pre_write_pass(record)      # before storage write; tokenizes in place
    <storage write>
    post_identity_pass(record)  # after storage write; picks up fields that
                                # needed a storage-assigned id, applies them
                                # with a targeted update, settles the cache

Read path::

    resolve(record, field)              # nulled > pending > cache > decrypt
    resolve_many(record, fields)        # one decrypt call for one record
    preload(records, fields)            # one decrypt call for a collection

Every method takes a :class:`~pii_tokenizer.adapters.base.PersistenceAdapter`;
the coordinator has no knowledge of the storage framework. Encryption
service errors propagate unchanged and nothing is retried.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from pii_tokenizer.adapters.base import PersistenceAdapter
from pii_tokenizer.client import EncryptionService, TokenizationRequest, get_encryption_client
from pii_tokenizer.registry import (
    JsonTokenizedField,
    TokenizationPolicy,
    TokenizedField,
    validate_token_columns,
)
from pii_tokenizer.tracker import ChangeTracker, WriteLedger, normalize_plaintext

logger = logging.getLogger(__name__)


class _DecryptPlan:
    """Values resolved without the service, plus the tokens still to decrypt."""

    def __init__(self, record: PersistenceAdapter):
        self.record = record
        self.resolved: dict[str, Any] = {}
        self.documents: dict[str, dict] = {}
        # (field, json key or None, token)
        self.wanted: list[tuple[str, str | None, str]] = []

    def tokens(self) -> list[str]:
        return [token for _, _, token in self.wanted]


class TokenizationCoordinator:
    """Batches encryption and decryption for records of one model."""

    def __init__(
        self,
        policy: TokenizationPolicy,
        client: EncryptionService | None = None,
        schema_checked: bool = False,
    ):
        self.policy = policy
        self._client = client
        self._schema_checked = schema_checked

    @property
    def client(self) -> EncryptionService:
        if self._client is None:
            return get_encryption_client()
        return self._client

    def mark_schema_checked(self) -> None:
        self._schema_checked = True

    def ensure_schema(self, record: PersistenceAdapter) -> None:
        """Check token columns once per coordinator."""
        if self._schema_checked:
            return
        validate_token_columns(self.policy, record.has_column)
        self._schema_checked = True

    # =========================================================================
    # Entity derivation
    # =========================================================================

    def entity_type_for(self, record: PersistenceAdapter) -> str:
        entity_type = self.policy.entity_type
        if callable(entity_type):
            entity_type = entity_type(record.instance)
        return str(entity_type)

    def entity_id_for(self, record: PersistenceAdapter) -> str:
        """Entity id as a string; empty when the record cannot be tokenized yet."""
        entity_id = self.policy.entity_id(record.instance)
        if entity_id is None:
            return ""
        entity_id = str(entity_id)
        return entity_id if entity_id.strip() else ""

    # =========================================================================
    # Write path
    # =========================================================================

    def write(self, record: PersistenceAdapter, name: str, value: Any) -> None:
        ChangeTracker(self.policy, record).mark_written(name, value)

    def pre_write_pass(self, record: PersistenceAdapter) -> None:
        """Tokenize every field that needs it, before the storage write."""
        self.ensure_schema(record)
        ledger = record.tokenization_state().begin_cycle()

        entity_id = self.entity_id_for(record)
        if not entity_id:
            ledger.deferred = True
            logger.debug("No entity id yet, deferring tokenization to post-identity pass")
            return

        tracker = ChangeTracker(self.policy, record)
        if record.is_persisted() and not tracker.any_dirty() and tracker.all_tokens_present():
            return

        self._tokenize(record, tracker, ledger, entity_id)

        for column, value in ledger.pending_storage_updates.items():
            record.write_field(column, value)
            record.mark_changed(column)
        ledger.pending_storage_updates.clear()

    def post_identity_pass(self, record: PersistenceAdapter) -> None:
        """
        Finish the write cycle after the storage write.

        Fields the pre-write pass could not handle (no entity id yet) are
        tokenized now and written with a targeted update. Every processed
        field's plaintext then moves into the cache and the ledger is
        discarded.
        """
        state = record.tokenization_state()
        ledger = state.begin_cycle()
        tracker = ChangeTracker(self.policy, record)

        entity_id = self.entity_id_for(record)
        if entity_id:
            self._tokenize(record, tracker, ledger, entity_id)
            if ledger.pending_storage_updates:
                record.apply_targeted_update(dict(ledger.pending_storage_updates))
                ledger.pending_storage_updates.clear()
        elif ledger.deferred:
            logger.warning("Entity id still blank after storage write; fields left untokenized")

        self._settle(tracker, ledger)
        state.end_cycle()

    def finish_cycle(self, record: PersistenceAdapter) -> None:
        """Settle and close a cycle that had no post-identity pass."""
        state = record.tokenization_state()
        if state.ledger is None:
            return
        self._settle(ChangeTracker(self.policy, record), state.ledger)
        state.end_cycle()

    def discard_cycle(self, record: PersistenceAdapter) -> None:
        """Drop the ledger after a failed or rolled back write; pending values stay."""
        record.tokenization_state().end_cycle()

    def _settle(self, tracker: ChangeTracker, ledger: WriteLedger) -> None:
        for name, value in ledger.settled.items():
            tracker.settle(name, value)
        ledger.settled.clear()

    def _tokenize(
        self,
        record: PersistenceAdapter,
        tracker: ChangeTracker,
        ledger: WriteLedger,
        entity_id: str,
    ) -> None:
        """Stage token writes for every field that needs them, with at most one service call."""
        changed = record.changed_since_load()
        candidates = [
            spec
            for spec in (*self.policy.fields, *self.policy.json_fields)
            if not ledger.is_done(spec.name) and tracker.needs_tokenization(spec.name, changed)
        ]
        if not candidates:
            return

        entity_type = self.entity_type_for(record)
        updates: dict[str, Any] = {}
        settled: dict[str, Any] = {}
        processed: set[str] = set()
        requests: list[TokenizationRequest] = []
        scalar_values: dict[str, tuple[Any, TokenizationRequest]] = {}
        documents: dict[str, tuple[dict, dict[str, TokenizationRequest]]] = {}

        for spec in candidates:
            value = normalize_plaintext(spec, tracker.staged_value(spec.name))
            tracker.stage(spec.name, value)

            if value is None:
                self._stage_clear(record, spec, updates)
                settled[spec.name] = None
                processed.add(spec.name)
            elif spec.is_json:
                items = self._document_requests(spec, value, entity_type, entity_id)
                documents[spec.name] = (dict(value), items)
                requests.extend(items.values())
            elif value == "":
                self._stage_value(record, spec, "", "", updates)
                settled[spec.name] = ""
                processed.add(spec.name)
            else:
                request = TokenizationRequest(
                    value=value,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    pii_type=spec.pii_type,
                    field_name=spec.name,
                )
                scalar_values[spec.name] = (value, request)
                requests.append(request)

        tokens = self.client.encrypt_batch(requests) if requests else {}

        skipped: set[str] = set()
        for name, (value, request) in scalar_values.items():
            token = tokens.get(request.composite_key)
            if token is None:
                skipped.add(name)
                continue
            self._stage_value(record, self.policy.field(name), value, token, updates)
            settled[name] = value
            processed.add(name)

        for name, (document, items) in documents.items():
            token_doc = dict(document)
            missing = False
            for key, request in items.items():
                token = tokens.get(request.composite_key)
                if token is None:
                    missing = True
                    break
                token_doc[key] = token
            if missing:
                skipped.add(name)
                continue
            self._stage_value(record, self.policy.json_field(name), document, token_doc, updates)
            settled[name] = document
            processed.add(name)

        if skipped:
            logger.warning(
                "Encryption service omitted %d of %d values; leaving fields untouched: %s",
                len(skipped), len(requests), ", ".join(sorted(skipped)),
            )

        ledger.processed_fields |= processed
        ledger.skipped_fields |= skipped
        ledger.settled.update(settled)
        ledger.pending_storage_updates.update(updates)

        if requests:
            logger.debug(
                "Tokenized %d value(s) in one batch",
                len(requests) - len(skipped),
                extra={"entity_type": entity_type, "fields": sorted(processed)},
            )

    def _document_requests(
        self,
        spec: JsonTokenizedField,
        document: Mapping[str, Any],
        entity_type: str,
        entity_id: str,
    ) -> dict[str, TokenizationRequest]:
        requests = {}
        for key, pii_type in spec.key_types:
            value = document.get(key)
            if value is None or value == "":
                continue
            requests[key] = TokenizationRequest(
                value=str(value),
                entity_type=entity_type,
                entity_id=entity_id,
                pii_type=pii_type,
                field_name=spec.cache_key(key),
            )
        return requests

    def _stage_clear(
        self,
        record: PersistenceAdapter,
        spec: TokenizedField | JsonTokenizedField,
        updates: dict[str, Any],
    ) -> None:
        self._stage_column(record, spec.token_field, None, updates)
        if self.policy.dual_write or record.read_field(spec.name) is not None:
            self._stage_column(record, spec.name, None, updates)

    def _stage_value(
        self,
        record: PersistenceAdapter,
        spec: TokenizedField | JsonTokenizedField,
        plaintext: Any,
        token: Any,
        updates: dict[str, Any],
    ) -> None:
        self._stage_column(record, spec.token_field, token, updates)
        if self.policy.dual_write:
            self._stage_column(record, spec.name, plaintext, updates)
        elif record.read_field(spec.name) is not None:
            # Plaintext stays in memory only
            self._stage_column(record, spec.name, None, updates)

    @staticmethod
    def _stage_column(
        record: PersistenceAdapter, column: str, value: Any, updates: dict[str, Any]
    ) -> None:
        if record.is_new_record() or record.read_field(column) != value:
            updates[column] = value

    # =========================================================================
    # Read path
    # =========================================================================

    def resolve(self, record: PersistenceAdapter, name: str) -> Any:
        """Plaintext of one field."""
        spec = self.policy.any_field(name)
        state = record.tokenization_state()
        first_miss = state.cache.is_empty()

        plan = self._plan(record, [spec])
        if not plan.wanted:
            return self._result(plan, name)

        if first_miss:
            # Decrypt the whole record on the first miss
            return self.resolve_many(record)[name]

        self._decrypt([plan])
        return self._result(plan, name)

    def resolve_json(self, record: PersistenceAdapter, name: str) -> dict | None:
        """Decrypted document of a JSON field."""
        self.policy.json_field(name)
        return self.resolve(record, name)

    def resolve_many(
        self, record: PersistenceAdapter, names: Iterable[str] | None = None
    ) -> dict[str, Any]:
        """Plaintext of several fields of one record, with at most one decrypt call."""
        return self.preload([record], names)[0]

    def preload(
        self, records: Sequence[PersistenceAdapter], names: Iterable[str] | None = None
    ) -> list[dict[str, Any]]:
        """
        Decrypt fields across many records with at most one decrypt call.

        Returns one ``{field: plaintext}`` dict per record, in order.
        """
        specs = [self.policy.any_field(n) for n in (names or self.policy.all_field_names())]
        plans = [self._plan(record, specs) for record in records]
        self._decrypt(plans)
        return [
            {spec.name: self._result(plan, spec.name) for spec in specs}
            for plan in plans
        ]

    def on_load(self, record: PersistenceAdapter) -> None:
        """Forget cached and pending state after a (re)load from storage."""
        record.tokenization_state().reset()

    def clear_cache(self, record: PersistenceAdapter) -> None:
        record.tokenization_state().cache.clear()

    def _plan(
        self,
        record: PersistenceAdapter,
        specs: Iterable[TokenizedField | JsonTokenizedField],
    ) -> _DecryptPlan:
        plan = _DecryptPlan(record)
        tracker = ChangeTracker(self.policy, record)
        cache = tracker.state.cache
        changed = record.changed_since_load()

        for spec in specs:
            known, value = tracker.unsaved_value(spec.name, changed)
            if known:
                plan.resolved[spec.name] = dict(value) if spec.is_json and value else value
                continue

            if not spec.is_json:
                hit, value = cache.lookup(spec.name)
                if hit:
                    plan.resolved[spec.name] = value
                    continue

            plain = record.read_field(spec.name)
            if not self.policy.read_from_token:
                plan.resolved[spec.name] = plain
                continue

            token = record.read_field(spec.token_field)
            if token is None:
                plan.resolved[spec.name] = plain
            elif spec.is_json:
                self._plan_document(plan, spec, token, cache)
            elif token == "":
                cache.store(spec.name, "")
                plan.resolved[spec.name] = ""
            else:
                plan.wanted.append((spec.name, None, token))

        return plan

    def _plan_document(self, plan, spec, token_doc, cache) -> None:
        if not isinstance(token_doc, Mapping):
            plan.resolved[spec.name] = plan.record.read_field(spec.name)
            return
        document = dict(token_doc)
        for key in spec.keys:
            token = token_doc.get(key)
            if token is None or token == "":
                continue
            hit, value = cache.lookup(spec.cache_key(key))
            if hit:
                document[key] = value
            else:
                plan.wanted.append((spec.name, key, token))
        plan.documents[spec.name] = document

    def _decrypt(self, plans: list[_DecryptPlan]) -> None:
        tokens = list(dict.fromkeys(t for plan in plans for t in plan.tokens()))
        if not tokens:
            return

        decrypted = self.client.decrypt_batch(tokens)
        missing = 0

        for plan in plans:
            cache = plan.record.tokenization_state().cache
            for name, key, token in plan.wanted:
                if token in decrypted:
                    value = decrypted[token]
                else:
                    # Fall back to whatever the plain column holds
                    missing += 1
                    plain = plan.record.read_field(name)
                    if key is None:
                        value = plain
                    else:
                        value = plain.get(key) if isinstance(plain, Mapping) else None

                if key is None:
                    cache.store(name, value)
                    plan.resolved[name] = value
                else:
                    cache.store(f"{name}.{key}", value)
                    plan.documents[name][key] = value
            plan.wanted.clear()

        if missing:
            logger.warning(
                "Encryption service could not decrypt %d of %d token(s); using plain column values",
                missing, len(tokens),
            )

    @staticmethod
    def _result(plan: _DecryptPlan, name: str) -> Any:
        if name in plan.resolved:
            return plan.resolved[name]
        return plan.documents.get(name)
