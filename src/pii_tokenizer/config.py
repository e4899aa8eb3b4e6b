"""
Configuration management for pii-tokenizer.

Configuration is loaded from:
1. Environment variables (highest priority)
2. pii_tokenizer.yaml file
3. Default values (lowest priority)

Environment variables use the ``PII_TOKENIZER_`` prefix and ``__`` for
nesting, e.g.::

    PII_TOKENIZER_ENCRYPTION_SERVICE__URL=https://encryption.internal
    PII_TOKENIZER_ENCRYPTION_SERVICE__TIMEOUT=5
    PII_TOKENIZER_STRICT_SCHEMA_VALIDATION=false
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict
import yaml

from pii_tokenizer.pii_types import normalize_pii_type


class EncryptionServiceSettings(BaseModel):
    """
    Encryption service connection.

    The core never retries or times out on its own; ``timeout`` and
    ``open_timeout`` are handed to the HTTP transport as-is.
    """

    url: str | None = None
    token: str | None = None  # Sent as a bearer token when set
    timeout: float = 10.0  # Read/write timeout in seconds
    open_timeout: float = 2.0  # Connect timeout in seconds

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().rstrip("/")
        return v or None


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_format: bool = False
    file: str | None = None


class TokenizerSettings(BaseSettings):
    """Main settings class that combines all configuration sections."""

    model_config = SettingsConfigDict(
        env_prefix="PII_TOKENIZER_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    encryption_service: EncryptionServiceSettings = Field(
        default_factory=EncryptionServiceSettings
    )
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    # Verify token columns when a model is configured. When disabled the
    # check runs once, on the first write pass for that model.
    strict_schema_validation: bool = True

    # Extra PII types accepted on top of the built-in vocabulary
    custom_pii_types: list[str] = Field(default_factory=list)

    @field_validator("custom_pii_types")
    @classmethod
    def normalize_custom_types(cls, v: list[str]) -> list[str]:
        return [normalize_pii_type(t) for t in v if str(t).strip()]

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML values arrive as init kwargs; environment overrides them
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def load_yaml_config(path: Path | None = None) -> dict:
    """Load configuration from YAML file."""
    if path is None:
        env_path = os.environ.get("PII_TOKENIZER_CONFIG")
        candidates = [Path(env_path)] if env_path else []
        candidates += [
            Path("pii_tokenizer.yaml"),
            Path("config/pii_tokenizer.yaml"),
        ]
        for candidate in candidates:
            if candidate.exists():
                path = candidate
                break

    if path and path.exists():
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        # Support nesting under a top-level "pii_tokenizer" key
        return data.get("pii_tokenizer", data)

    return {}


@lru_cache
def get_settings() -> TokenizerSettings:
    """Get cached settings instance."""
    yaml_config = load_yaml_config()

    # Environment variables take precedence over YAML values
    return TokenizerSettings(**yaml_config)


def reload_settings() -> TokenizerSettings:
    """Force reload of settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
