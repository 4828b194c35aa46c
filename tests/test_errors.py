"""Tests for the error hierarchy."""

from budstack.errors import (
    GENERIC_UPSTREAM_MESSAGE,
    BudStackError,
    CredentialError,
    DecryptionError,
    ExternalApiError,
    MissingCredentialsError,
    UpstreamLogicError,
    describe_upstream_error,
)


class TestHierarchy:
    """Tests for exception classes."""

    def test_credential_errors(self):
        """Test credential failures share a base."""
        assert issubclass(MissingCredentialsError, CredentialError)
        assert issubclass(DecryptionError, CredentialError)
        assert issubclass(CredentialError, BudStackError)

    def test_missing_credentials_default(self):
        """Test the default message is the machine-readable code."""
        error = MissingCredentialsError()

        assert str(error) == "MISSING_CREDENTIALS"
        assert error.code == "MISSING_CREDENTIALS"

    def test_external_api_error(self):
        """Test status, reason and body are kept."""
        error = ExternalApiError(404, "Not Found", {"message": "nope"})

        assert error.status_code == 404
        assert error.message.startswith("Doctor Green API Error: 404 Not Found")
        assert error.to_dict()["body"] == {"message": "nope"}
        assert error.to_dict()["error_type"] == "ExternalApiError"


class TestDescribeUpstreamError:
    """Tests for describe_upstream_error."""

    def test_consultation(self):
        assert describe_upstream_error(
            UpstreamLogicError("Client must COMPLETE CONSULTATION")
        ) == "Please complete your medical consultation before placing orders"

    def test_missing_credentials_with_custom_message(self):
        """Test missing credentials are recognized by code, not message."""
        message = describe_upstream_error(MissingCredentialsError("Tenant not found: t1"))

        assert "not connected to Dr. Green" in message

    def test_empty_cart(self):
        assert describe_upstream_error(UpstreamLogicError("Cart is empty")).startswith(
            "Your cart is empty"
        )

    def test_unknown_upstream_message_passes_through(self):
        """Test other envelope failures surface their own message."""
        assert describe_upstream_error(UpstreamLogicError("Product unavailable")) == (
            "Product unavailable"
        )

    def test_generic(self):
        """Test anything else gets the generic message."""
        assert describe_upstream_error(ExternalApiError(500, "Internal Server Error")) == (
            GENERIC_UPSTREAM_MESSAGE
        )
        assert describe_upstream_error(RuntimeError("boom")) == GENERIC_UPSTREAM_MESSAGE
