"""Tests for the exception hierarchy."""

import pytest

from pii_tokenizer.exceptions import (
    EncryptionServiceConnectivityError,
    EncryptionServiceError,
    EncryptionServiceResponseError,
    InvalidConfigurationError,
    MissingTokenColumnError,
    PiiTokenizerError,
)


class TestHierarchy:
    """Every error derives from PiiTokenizerError."""

    @pytest.mark.parametrize("cls", [
        InvalidConfigurationError,
        MissingTokenColumnError,
        EncryptionServiceError,
        EncryptionServiceConnectivityError,
        EncryptionServiceResponseError,
    ])
    def test_base_class(self, cls):
        assert issubclass(cls, PiiTokenizerError)

    def test_service_errors_share_a_base(self):
        assert issubclass(EncryptionServiceConnectivityError, EncryptionServiceError)
        assert issubclass(EncryptionServiceResponseError, EncryptionServiceError)
        assert not issubclass(MissingTokenColumnError, EncryptionServiceError)


class TestMessages:
    """Message formatting and attributes."""

    def test_plain_message(self):
        assert str(PiiTokenizerError("Something failed")) == "Something failed"

    def test_context_and_details(self):
        error = PiiTokenizerError("Failed", context="saving User", details={"field": "email"})
        assert str(error) == "Failed. Context: saving User. Details: field='email'"

    def test_invalid_configuration_field(self):
        error = InvalidConfigurationError("Bad PII type", field_name="email")
        assert error.field_name == "email"
        assert error.details == {"field": "email"}

    def test_missing_token_column(self):
        error = MissingTokenColumnError("email_token")
        assert error.column == "email_token"
        assert "Column 'email_token' must exist for tokenization" in str(error)

    def test_connectivity_endpoint(self):
        error = EncryptionServiceConnectivityError("Failed to connect", endpoint="/api/v1/tokens/bulk")
        assert error.endpoint == "/api/v1/tokens/bulk"
        assert "endpoint='/api/v1/tokens/bulk'" in str(error)

    def test_response_status_code(self):
        error = EncryptionServiceResponseError("Encryption service error (HTTP 500): boom", status_code=500)
        assert error.status_code == 500
        assert error.details["status_code"] == 500

    def test_catchable_as_base(self):
        with pytest.raises(PiiTokenizerError):
            raise EncryptionServiceResponseError("bad", status_code=502)
