"""
integration_runtime.core.exceptions - Typed Failure Taxonomy
==============================================================

Every failure the runtime surfaces is a subclass of IntegrationRuntimeError.
Platform code branches on the concrete type (or on ``error_code``) instead of
parsing messages, and the Retry Policy branches on ``transient``.

Exception Hierarchy:
    IntegrationRuntimeError (base)
        ├── ConfigurationError          - Invalid runtime configuration
        │   └── ConfigValidationError   - Integration options failed their schema
        ├── AuthError                   - Credential rejected / unusable
        │   └── AuthExpired             - Refresh attempted and failed
        ├── RateLimitExceeded           - Non-blocking governor had no budget
        ├── IntegrationApiError         - Non-2xx response from the third party
        ├── IntegrationNetworkError     - Timeout / connection failure (transient)
        ├── RetryExhausted              - Bounded retries used up
        ├── DiscoveryIncomplete         - Some resource categories failed
        ├── Cancelled                   - Cooperative cancellation honored
        ├── WebhookVerificationFailed   - Signature check failed, payload rejected
        └── RegistryError               - Lookup / registration problems

Transient vs. Terminal:
    ``transient`` is True for IntegrationNetworkError, for IntegrationApiError
    with a 5xx or 429 status, and for RateLimitExceeded. Everything else is
    terminal and propagates immediately.

Secrets:
    No exception in this module ever stores credential material in
    ``details``. Config errors list offending field names, never values.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from integration_runtime.core.models import Resource


# =============================================================================
# Base Exception
# =============================================================================
class IntegrationRuntimeError(Exception):
    """Base exception for every error raised by the integration runtime.

    Attributes:
        message: Human-readable error description.
        error_code: Machine-readable UPPER_SNAKE_CASE code.
        details: Extra debugging context (never secrets).
    """

    transient: bool = False

    def __init__(
        self,
        message: str,
        error_code: str = "INTEGRATION_RUNTIME_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize this exception for structured logs and API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "transient": self.transient,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


# =============================================================================
# Configuration Errors
# =============================================================================
# Raised at construction time. Bad configuration is never retried.
# =============================================================================
class ConfigurationError(IntegrationRuntimeError):
    """Raised when runtime-level configuration is invalid or unreadable."""

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIG_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


class ConfigValidationError(ConfigurationError):
    """Raised when an integration's option mapping fails its declared schema.

    Attributes:
        integration_id: Descriptor identifier of the integration being built.
        fields: Offending option names with a short reason for each.

    Example:
        >>> raise ConfigValidationError(
        ...     message="Invalid configuration for 'acme-cloud'",
        ...     integration_id="acme-cloud",
        ...     fields={"apiKey": "Field required"},
        ... )
    """

    def __init__(
        self,
        message: str,
        integration_id: Optional[str] = None,
        fields: Optional[dict[str, str]] = None,
        error_code: str = "CONFIG_VALIDATION_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if integration_id:
            enriched_details["integration_id"] = integration_id
        enriched_details["fields"] = dict(fields or {})

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.integration_id = integration_id
        self.fields = dict(fields or {})


# =============================================================================
# Authentication Errors
# =============================================================================
# Retrying with the same bad credential is futile, so these are terminal.
# =============================================================================
class AuthError(IntegrationRuntimeError):
    """Raised when a credential is invalid or cannot be used to sign requests."""

    def __init__(
        self,
        message: str,
        error_code: str = "AUTH_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


class AuthExpired(AuthError):
    """Raised when a credential expired and refreshing it also failed."""

    def __init__(
        self,
        message: str,
        error_code: str = "AUTH_EXPIRED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


# =============================================================================
# Rate Limiting
# =============================================================================
class RateLimitExceeded(IntegrationRuntimeError):
    """Raised by a non-blocking Rate Governor when no budget is available.

    Not retried locally: the caller decides when to try again.

    Attributes:
        retry_after: Seconds until the governor expects budget again, if known.
    """

    transient = False

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        error_code: str = "RATE_LIMIT_EXCEEDED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if retry_after is not None:
            enriched_details["retry_after"] = retry_after

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.retry_after = retry_after


# =============================================================================
# Third-Party API Errors
# =============================================================================
class IntegrationApiError(IntegrationRuntimeError):
    """Raised for a non-2xx response from a third-party API.

    5xx and 429 responses are transient; any other status is terminal.

    Attributes:
        status_code: HTTP status code returned by the remote service.
        body: Response body text (possibly truncated).
        retry_after: Server-advised wait in seconds (429/503), if present.
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        body: str = "",
        retry_after: Optional[float] = None,
        error_code: str = "INTEGRATION_API_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["status_code"] = status_code
        if retry_after is not None:
            enriched_details["retry_after"] = retry_after

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.status_code = status_code
        self.body = body
        self.retry_after = retry_after

    @property
    def transient(self) -> bool:  # type: ignore[override]
        return self.status_code == 429 or self.status_code >= 500


class IntegrationNetworkError(IntegrationRuntimeError):
    """Raised when a request never produced a response (timeout, reset, DNS)."""

    transient = True

    def __init__(
        self,
        message: str,
        error_code: str = "NETWORK_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


# =============================================================================
# Retry Exhaustion
# =============================================================================
class RetryExhausted(IntegrationRuntimeError):
    """Raised when every allowed attempt failed with a transient error.

    Attributes:
        attempts: Total attempts issued (max_retries + 1).
        cause: The last transient error observed.
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        cause: BaseException,
        error_code: str = "RETRY_EXHAUSTED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["attempts"] = attempts
        enriched_details["cause_type"] = type(cause).__name__
        enriched_details["cause"] = str(cause)

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.attempts = attempts
        self.cause = cause


# =============================================================================
# Partial Discovery
# =============================================================================
class DiscoveryIncomplete(IntegrationRuntimeError):
    """Raised when some resource categories could not be listed.

    Resources from categories that did succeed are carried on the exception
    instead of being thrown away.

    Attributes:
        partial_results: Resources discovered before/besides the failures.
        failures: Map of failed category -> the exception it raised.
    """

    def __init__(
        self,
        message: str,
        partial_results: list[Resource],
        failures: dict[str, BaseException],
        error_code: str = "DISCOVERY_INCOMPLETE",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        enriched_details["discovered"] = len(partial_results)
        enriched_details["failed_categories"] = {
            category: f"{type(exc).__name__}: {exc}" for category, exc in failures.items()
        }

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.partial_results = list(partial_results)
        self.failures = dict(failures)

    @property
    def cause(self) -> Optional[BaseException]:
        """The first category failure, for callers that only want one cause."""
        return next(iter(self.failures.values()), None)


# =============================================================================
# Cancellation
# =============================================================================
class Cancelled(IntegrationRuntimeError):
    """Raised when an operation observed its cancellation token. Never retried."""

    def __init__(
        self,
        message: str = "Operation cancelled",
        error_code: str = "CANCELLED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message=message, error_code=error_code, details=details)


# =============================================================================
# Webhooks
# =============================================================================
class WebhookVerificationFailed(IntegrationRuntimeError):
    """Raised when an inbound webhook's signature does not verify.

    The payload is rejected before any handler logic sees it.

    Attributes:
        status_code: Status to answer the sender with (401 by default).
    """

    def __init__(
        self,
        message: str,
        integration_id: Optional[str] = None,
        status_code: int = 401,
        error_code: str = "WEBHOOK_VERIFICATION_FAILED",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if integration_id:
            enriched_details["integration_id"] = integration_id

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.integration_id = integration_id
        self.status_code = status_code


# =============================================================================
# Registry
# =============================================================================
class RegistryError(IntegrationRuntimeError):
    """Raised for duplicate registrations, unknown ids and missing capabilities.

    Error codes:
        DUPLICATE_INTEGRATION, INTEGRATION_NOT_FOUND,
        CAPABILITY_NOT_SUPPORTED, UNKNOWN_INTEGRATION_KIND
    """

    def __init__(
        self,
        message: str,
        integration_id: Optional[str] = None,
        error_code: str = "REGISTRY_ERROR",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        enriched_details = details or {}
        if integration_id:
            enriched_details["integration_id"] = integration_id

        super().__init__(message=message, error_code=error_code, details=enriched_details)

        self.integration_id = integration_id
