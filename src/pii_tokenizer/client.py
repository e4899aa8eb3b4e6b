"""
HTTP client for the encryption/tokenization service.

Provides a persistent synchronous client with:
- Connection pooling via a single ``httpx.Client``
- Batch encrypt, batch decrypt and token search endpoints
- Request/response logging with plaintext redacted

The client never retries. Transport failures raise
:class:`EncryptionServiceConnectivityError`, non-success responses raise
:class:`EncryptionServiceResponseError`; both propagate to the caller.

Example::

    with EncryptionClient("https://encryption.internal", token="...") as client:
        tokens = client.encrypt_batch([
            TokenizationRequest("a@b.com", "customer", "customer_1", "EMAIL", "email"),
        ])
        values = client.decrypt_batch(list(tokens.values()))
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx

from pii_tokenizer.exceptions import (
    EncryptionServiceConnectivityError,
    EncryptionServiceResponseError,
    InvalidConfigurationError,
)
from pii_tokenizer.logging_utils import (
    redact_payload,
    redact_response_body,
    sanitize_for_logging,
)

logger = logging.getLogger(__name__)

ENCRYPT_PATH = "/api/v1/tokens/bulk"
DECRYPT_PATH = "/api/v1/tokens/decrypt"
SEARCH_PATH = "/api/v1/tokens/search"


def composite_key(entity_type: Any, entity_id: Any, pii_type: Any, value: Any) -> str:
    """Key identifying one encrypted value in a batch response."""
    return f"{str(entity_type).upper()}:{entity_id}:{pii_type}:{value}"


@dataclass(frozen=True)
class TokenizationRequest:
    """One value to tokenize. Built per write pass, never persisted."""

    value: str
    entity_type: str
    entity_id: str
    pii_type: str
    field_name: str

    @property
    def composite_key(self) -> str:
        return composite_key(self.entity_type, self.entity_id, self.pii_type, self.value)

    def to_payload(self) -> dict[str, str]:
        return {
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "pii_type": self.pii_type,
            "pii_field": self.value,
        }


@runtime_checkable
class EncryptionService(Protocol):
    """What the coordinator needs from an encryption backend."""

    def encrypt_batch(self, items: Sequence[TokenizationRequest]) -> dict[str, str]:
        """Return ``{composite_key: token}``; keys may be missing from a partial answer."""
        ...

    def decrypt_batch(self, tokens: Iterable[str] | str | None) -> dict[str, Any]:
        """Return ``{token: plaintext}``; tokens may be missing from a partial answer."""
        ...

    def search_tokens(self, value: Any) -> list[str]:
        """Return every token whose plaintext equals ``value``."""
        ...


def _data_entries(body: Any) -> list[dict]:
    if isinstance(body, dict):
        body = body.get("data")
    if not isinstance(body, list):
        return []
    return [entry for entry in body if isinstance(entry, dict)]


class EncryptionClient:
    """Synchronous client for the encryption service API."""

    def __init__(
        self,
        base_url: str | None,
        token: str | None = None,
        timeout: float = 10.0,
        open_timeout: float = 2.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if not base_url or not str(base_url).strip():
            raise InvalidConfigurationError(
                "Encryption service URL must be configured",
                field_name="encryption_service.url",
            )
        self.base_url = str(base_url).strip().rstrip("/")
        self.token = token
        self.timeout = timeout
        self.open_timeout = open_timeout
        self._transport = transport
        self._client: httpx.Client | None = None

    @classmethod
    def from_settings(cls, settings=None) -> EncryptionClient:
        if settings is None:
            from pii_tokenizer.config import get_settings

            settings = get_settings()
        svc = settings.encryption_service
        return cls(
            svc.url,
            token=svc.token,
            timeout=svc.timeout,
            open_timeout=svc.open_timeout,
        )

    # Connection lifecycle
    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get_client(self) -> httpx.Client:
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=httpx.Timeout(self.timeout, connect=self.open_timeout),
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        if self._client and not self._client.is_closed:
            self._client.close()
        self._client = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # Core request
    def _request(self, method: str, path: str, **kwargs) -> Any:
        """Send one request and return the decoded JSON body."""
        client = self._get_client()
        logged = kwargs.get("json", kwargs.get("params"))
        logger.debug("REQUEST: %s %s %s", method, path, redact_payload(logged))

        try:
            response = client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.error(
                "Encryption service unreachable on %s %s: %s",
                method, path, type(e).__name__,
            )
            raise EncryptionServiceConnectivityError(
                f"Failed to connect to encryption service: {e}", endpoint=path
            ) from e

        logger.debug(
            "RESPONSE: %s %s %d %s",
            method, path, response.status_code, redact_response_body(response.text),
        )

        if not response.is_success:
            detail = self._error_detail(response)
            logger.error(
                "Encryption service returned HTTP %d on %s %s: %s",
                response.status_code, method, path, sanitize_for_logging(detail),
            )
            raise EncryptionServiceResponseError(
                f"Encryption service error (HTTP {response.status_code}): {detail}",
                status_code=response.status_code,
                endpoint=path,
            )

        try:
            return response.json()
        except ValueError as e:
            logger.error("Non-JSON response from encryption service on %s %s", method, path)
            raise EncryptionServiceResponseError(
                "Non-JSON response from encryption service",
                status_code=response.status_code,
                endpoint=path,
            ) from e

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict) and body.get("error"):
            return str(body["error"])
        return response.text

    # Endpoints
    def encrypt_batch(self, items: Sequence[TokenizationRequest]) -> dict[str, str]:
        """
        Tokenize many values in one request.

        Returns:
            ``{composite_key: token}`` for every entry the service answered.
        """
        if not items:
            return {}

        body = self._request("POST", ENCRYPT_PATH, json=[item.to_payload() for item in items])

        result: dict[str, str] = {}
        for entry in _data_entries(body):
            key = composite_key(
                entry.get("entity_type"),
                entry.get("entity_id"),
                entry.get("pii_type"),
                entry.get("pii_field"),
            )
            result[key] = entry.get("token")
        return result

    def decrypt_batch(self, tokens: Iterable[str] | str | None) -> dict[str, Any]:
        """Resolve tokens to plaintext in one request. Duplicate tokens are sent once."""
        if tokens is None:
            return {}
        if isinstance(tokens, str):
            tokens = [tokens]
        unique = list(dict.fromkeys(t for t in tokens if t))
        if not unique:
            return {}

        body = self._request("GET", DECRYPT_PATH, params={"tokens[]": unique})

        return {
            entry["token"]: entry.get("decrypted_value")
            for entry in _data_entries(body)
            if entry.get("token") is not None
        }

    def search_tokens(self, value: Any) -> list[str]:
        """Find the tokens stored for a plaintext value."""
        if value is None or not str(value).strip():
            return []

        body = self._request("POST", SEARCH_PATH, json={"pii_field": value})

        return [entry["token"] for entry in _data_entries(body) if entry.get("token")]


# Process-wide default client
_default_client: EncryptionService | None = None
_default_lock = threading.Lock()


def get_encryption_client() -> EncryptionService:
    """Return the default client, building it from settings on first use."""
    global _default_client
    if _default_client is None:
        with _default_lock:
            if _default_client is None:
                _default_client = EncryptionClient.from_settings()
    return _default_client


def set_encryption_client(client: EncryptionService | None) -> None:
    global _default_client
    with _default_lock:
        _default_client = client


def reset_encryption_client() -> None:
    """Close and forget the default client."""
    global _default_client
    with _default_lock:
        client, _default_client = _default_client, None
    if isinstance(client, EncryptionClient):
        client.close()
