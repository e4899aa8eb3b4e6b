"""Tests for pii-tokenizer configuration.

Tests for TokenizerSettings, YAML loading and the settings cache.
"""

import pytest

from pii_tokenizer.config import (
    EncryptionServiceSettings,
    TokenizerSettings,
    get_settings,
    load_yaml_config,
    reload_settings,
)
from pii_tokenizer.registry import configure


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch, tmp_path):
    """No stray PII_TOKENIZER_* variables or config files."""
    import os

    for key in list(os.environ):
        if key.startswith("PII_TOKENIZER_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


# =============================================================================
# DEFAULTS
# =============================================================================

class TestDefaults:
    """Tests for default values."""

    def test_encryption_service_defaults(self):
        settings = TokenizerSettings()
        assert settings.encryption_service.url is None
        assert settings.encryption_service.token is None
        assert settings.encryption_service.timeout == 10.0
        assert settings.encryption_service.open_timeout == 2.0

    def test_strict_schema_validation_on(self):
        assert TokenizerSettings().strict_schema_validation is True

    def test_logging_defaults(self):
        settings = TokenizerSettings()
        assert settings.logging.level == "INFO"
        assert settings.logging.json_format is False


# =============================================================================
# VALIDATION
# =============================================================================

class TestValidation:
    """Tests for field validators."""

    def test_url_trailing_slash_stripped(self):
        assert EncryptionServiceSettings(url="https://enc.local/").url == "https://enc.local"

    def test_blank_url_is_none(self):
        assert EncryptionServiceSettings(url="   ").url is None

    def test_custom_pii_types_normalized(self):
        settings = TokenizerSettings(custom_pii_types=[" loyalty_id ", "", "Vin"])
        assert settings.custom_pii_types == ["LOYALTY_ID", "VIN"]


# =============================================================================
# SOURCES
# =============================================================================

class TestEnvironment:
    """Tests for environment variable overrides."""

    def test_nested_env_var(self, monkeypatch):
        monkeypatch.setenv("PII_TOKENIZER_ENCRYPTION_SERVICE__URL", "https://enc.local")
        monkeypatch.setenv("PII_TOKENIZER_ENCRYPTION_SERVICE__TIMEOUT", "3.5")
        settings = TokenizerSettings()
        assert settings.encryption_service.url == "https://enc.local"
        assert settings.encryption_service.timeout == 3.5

    def test_flag_env_var(self, monkeypatch):
        monkeypatch.setenv("PII_TOKENIZER_STRICT_SCHEMA_VALIDATION", "false")
        assert TokenizerSettings().strict_schema_validation is False

    def test_env_overrides_yaml(self, monkeypatch, tmp_path):
        (tmp_path / "pii_tokenizer.yaml").write_text(
            "strict_schema_validation: true\n"
        )
        monkeypatch.setenv("PII_TOKENIZER_STRICT_SCHEMA_VALIDATION", "false")
        assert reload_settings().strict_schema_validation is False


class TestYamlConfig:
    """Tests for load_yaml_config."""

    def test_no_file(self):
        assert load_yaml_config() == {}

    def test_file_in_working_directory(self, tmp_path):
        (tmp_path / "pii_tokenizer.yaml").write_text(
            "encryption_service:\n  url: https://enc.local/\n"
        )
        settings = reload_settings()
        assert settings.encryption_service.url == "https://enc.local"

    def test_nested_under_top_level_key(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("pii_tokenizer:\n  custom_pii_types: [loyalty_id]\n")
        assert load_yaml_config(path) == {"custom_pii_types": ["loyalty_id"]}

    def test_path_from_environment(self, monkeypatch, tmp_path):
        path = tmp_path / "elsewhere.yaml"
        path.write_text("strict_schema_validation: false\n")
        monkeypatch.setenv("PII_TOKENIZER_CONFIG", str(path))
        assert load_yaml_config() == {"strict_schema_validation": False}

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml_config(path) == {}


# =============================================================================
# CACHE
# =============================================================================

class TestSettingsCache:
    """Tests for get_settings / reload_settings."""

    def test_cached(self):
        assert get_settings() is get_settings()

    def test_reload_picks_up_changes(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("PII_TOKENIZER_CUSTOM_PII_TYPES", '["loyalty_id"]')
        second = reload_settings()
        assert second is not first
        assert second.custom_pii_types == ["LOYALTY_ID"]

    def test_custom_types_accepted_by_configure(self, monkeypatch):
        monkeypatch.setenv("PII_TOKENIZER_CUSTOM_PII_TYPES", '["loyalty_id"]')
        reload_settings()
        policy = configure({"card": "LOYALTY_ID"}, "member", lambda r: r.id)
        assert policy.field("card").pii_type == "LOYALTY_ID"
