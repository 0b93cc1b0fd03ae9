"""
Tests for integration_runtime.core.exceptions
===============================================

These tests verify the structured error taxonomy:
    - Every error carries error_code, details and to_dict()
    - The ``transient`` flag that drives the retry policy
    - Enriched details on the specialized errors
"""

import pytest

from integration_runtime.core.exceptions import (
    AuthError,
    AuthExpired,
    Cancelled,
    ConfigValidationError,
    DiscoveryIncomplete,
    IntegrationApiError,
    IntegrationNetworkError,
    IntegrationRuntimeError,
    RateLimitExceeded,
    RegistryError,
    RetryExhausted,
    WebhookVerificationFailed,
)
from integration_runtime.core.models import Resource


# =============================================================================
# Test: Base Error
# =============================================================================
class TestIntegrationRuntimeError:
    """Tests for the common error surface."""

    def test_to_dict(self) -> None:
        error = IntegrationRuntimeError("boom", error_code="BOOM", details={"k": "v"})
        assert error.to_dict() == {
            "error_type": "IntegrationRuntimeError",
            "message": "boom",
            "error_code": "BOOM",
            "transient": False,
            "details": {"k": "v"},
        }

    def test_repr_includes_code(self) -> None:
        assert "BOOM" in repr(IntegrationRuntimeError("boom", error_code="BOOM"))

    def test_all_errors_share_the_base(self) -> None:
        for error_cls in (
            AuthError,
            AuthExpired,
            Cancelled,
            ConfigValidationError,
            IntegrationNetworkError,
            RegistryError,
        ):
            assert issubclass(error_cls, IntegrationRuntimeError)


# =============================================================================
# Test: Transient Classification
# =============================================================================
class TestTransientFlag:
    """Which errors the retry policy may retry."""

    @pytest.mark.parametrize("status_code", [429, 500, 502, 503, 504])
    def test_api_error_transient_statuses(self, status_code: int) -> None:
        assert IntegrationApiError("x", status_code=status_code).transient is True

    @pytest.mark.parametrize("status_code", [400, 401, 403, 404, 422])
    def test_api_error_terminal_statuses(self, status_code: int) -> None:
        assert IntegrationApiError("x", status_code=status_code).transient is False

    def test_network_errors_are_transient(self) -> None:
        assert IntegrationNetworkError("reset").transient is True

    def test_terminal_errors(self) -> None:
        assert RateLimitExceeded("slow down", retry_after=2.0).transient is False
        assert AuthError("no").transient is False
        assert AuthExpired("expired").transient is False
        assert Cancelled().transient is False
        assert ConfigValidationError("bad").transient is False


# =============================================================================
# Test: Specialized Errors
# =============================================================================
class TestSpecializedErrors:
    """Details carried by the specialized errors."""

    def test_api_error_details(self) -> None:
        error = IntegrationApiError("x", status_code=503, body="down", retry_after=4.0)
        assert error.details["status_code"] == 503
        assert error.details["retry_after"] == 4.0
        assert error.body == "down"

    def test_retry_exhausted_keeps_cause(self) -> None:
        cause = IntegrationNetworkError("reset")
        error = RetryExhausted("gave up", attempts=4, cause=cause)
        assert error.cause is cause
        assert error.attempts == 4
        assert error.details["cause_type"] == "IntegrationNetworkError"

    def test_discovery_incomplete_partial_results(self) -> None:
        resource = Resource(id="b1", kind="bucket")
        failure = IntegrationApiError("down", status_code=503)
        error = DiscoveryIncomplete(
            "partial", partial_results=[resource], failures={"database": failure}
        )
        assert error.partial_results == [resource]
        assert error.cause is failure
        assert error.details["discovered"] == 1
        assert "database" in error.details["failed_categories"]

    def test_config_validation_error_fields(self) -> None:
        error = ConfigValidationError("bad", integration_id="acme", fields={"apiKey": "Field required"})
        assert error.details == {"integration_id": "acme", "fields": {"apiKey": "Field required"}}

    def test_webhook_verification_failed_status(self) -> None:
        error = WebhookVerificationFailed("bad signature", integration_id="github")
        assert error.status_code == 401
        assert error.error_code == "WEBHOOK_VERIFICATION_FAILED"

    def test_registry_error_code(self) -> None:
        error = RegistryError("dup", integration_id="acme", error_code="DUPLICATE_INTEGRATION")
        assert error.error_code == "DUPLICATE_INTEGRATION"
        assert error.details["integration_id"] == "acme"
