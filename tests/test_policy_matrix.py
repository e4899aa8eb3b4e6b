"""
Tests for the dual_write x read_from_token combinations.
"""

import pytest

from pii_tokenizer.coordinator import TokenizationCoordinator
from pii_tokenizer.registry import configure


def _coordinator(fake_service, dual_write, read_from_token):
    policy = configure(
        {"email": "EMAIL", "phone": "PHONE"},
        "contact",
        lambda r: r.id,
        dual_write=dual_write,
        read_from_token=read_from_token,
    )
    return TokenizationCoordinator(policy, client=fake_service)


def _save_and_reload(coordinator, make_record, **values):
    record = make_record(coordinator.policy, values={"id": 11})
    for name, value in values.items():
        coordinator.write(record, name, value)
    return record.save(coordinator).reload(coordinator)


# ===========================================================================
# Write behaviour
# ===========================================================================


class TestWriteBehaviour:
    """What reaches storage in each mode."""

    @pytest.mark.parametrize("read_from_token", [True, False])
    def test_token_only_without_dual_write(self, fake_service, make_record, read_from_token):
        coordinator = _coordinator(fake_service, False, read_from_token)
        record = _save_and_reload(coordinator, make_record, email="a@b.com", phone="555-0100")

        for name in ("email", "phone"):
            assert record.stored[name] is None
            assert record.stored[f"{name}_token"]

    @pytest.mark.parametrize("read_from_token", [True, False])
    def test_both_columns_with_dual_write(self, fake_service, make_record, read_from_token):
        coordinator = _coordinator(fake_service, True, read_from_token)
        record = _save_and_reload(coordinator, make_record, email="a@b.com", phone="555-0100")

        # Plain column and decrypted token agree
        for name in ("email", "phone"):
            assert record.stored[name] == fake_service.vault[record.stored[f"{name}_token"]]

    def test_dual_write_clear_nulls_both_columns(self, fake_service, make_record):
        coordinator = _coordinator(fake_service, True, True)
        record = _save_and_reload(coordinator, make_record, email="a@b.com", phone="555-0100")

        coordinator.write(record, "email", None)
        record.save(coordinator)

        assert record.stored["email"] is None
        assert record.stored["email_token"] is None

    def test_legacy_plaintext_migrated_on_save(self, fake_service, make_record):
        coordinator = _coordinator(fake_service, False, True)
        record = make_record(coordinator.policy, values={"id": 11, "email": "old@b.com"})
        record.persist()
        record.reload(coordinator)

        record.save(coordinator)

        assert record.stored["email"] is None
        assert fake_service.vault[record.stored["email_token"]] == "old@b.com"


# ===========================================================================
# Read behaviour
# ===========================================================================


class TestReadBehaviour:
    """Where reads come from in each mode."""

    def test_non_dual_write_reads_from_token(self, fake_service, make_record):
        coordinator = _coordinator(fake_service, False, True)
        record = _save_and_reload(coordinator, make_record, email="a@b.com")
        assert coordinator.resolve(record, "email") == "a@b.com"
        assert fake_service.decrypt_count == 1

    def test_no_backing_reads_none(self, fake_service, make_record):
        coordinator = _coordinator(fake_service, False, False)
        record = _save_and_reload(coordinator, make_record, email="a@b.com")
        assert coordinator.resolve(record, "email") is None
        assert fake_service.decrypt_count == 0

    def test_dual_write_read_from_token_decrypts(self, fake_service, make_record):
        coordinator = _coordinator(fake_service, True, True)
        record = _save_and_reload(coordinator, make_record, email="a@b.com")
        assert coordinator.resolve(record, "email") == "a@b.com"
        assert fake_service.decrypt_count == 1

    def test_dual_write_plain_read_makes_no_call(self, fake_service, make_record):
        coordinator = _coordinator(fake_service, True, False)
        record = _save_and_reload(coordinator, make_record, email="a@b.com")
        assert coordinator.resolve(record, "email") == "a@b.com"
        assert coordinator.resolve_many(record) == {"email": "a@b.com", "phone": None}
        assert fake_service.decrypt_count == 0

    @pytest.mark.parametrize("dual_write,read_from_token", [
        (False, True), (False, False), (True, True), (True, False),
    ])
    def test_unsaved_write_reads_back_in_every_mode(self, fake_service, make_record, dual_write, read_from_token):
        coordinator = _coordinator(fake_service, dual_write, read_from_token)
        record = make_record(coordinator.policy, values={"id": 11})
        coordinator.write(record, "email", "a@b.com")
        assert coordinator.resolve(record, "email") == "a@b.com"
