"""
integration_runtime.core - Foundation Layer
=============================================

Plain data structures and configuration shared by every other package:

    - config:      RuntimeConfig, IntegrationSettings, load_config
    - enums:       IntegrationCategory, Capability, AuthKind, statuses
    - models:      Descriptor, Credential, Evidence, TestResult, webhooks, ...
    - exceptions:  The typed failure taxonomy
    - logging:     structlog configuration and secret redaction

Dependency Rule:
    core/ depends on NOTHING else in the integration_runtime package.
"""

from integration_runtime.core.config import (
    AuthConfig,
    IntegrationSettings,
    RateLimitConfig,
    RetryConfig,
    RuntimeConfig,
    TransportConfig,
    load_config,
    validate_integration_config,
)
from integration_runtime.core.enums import (
    AuthKind,
    Capability,
    EvidenceStatus,
    EvidenceType,
    IntegrationCategory,
    TestStatus,
)
from integration_runtime.core.exceptions import (
    AuthError,
    AuthExpired,
    Cancelled,
    ConfigurationError,
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
from integration_runtime.core.models import (
    Control,
    Credential,
    Evidence,
    IntegrationDescriptor,
    Notification,
    NotificationResult,
    Resource,
    ResourceClassification,
    TestResult,
    WebhookEnvelope,
    WebhookResponse,
)

__all__ = [
    # Config
    "RuntimeConfig",
    "RetryConfig",
    "RateLimitConfig",
    "AuthConfig",
    "TransportConfig",
    "IntegrationSettings",
    "load_config",
    "validate_integration_config",
    # Enums
    "AuthKind",
    "Capability",
    "EvidenceStatus",
    "EvidenceType",
    "IntegrationCategory",
    "TestStatus",
    # Models
    "Control",
    "Credential",
    "Evidence",
    "IntegrationDescriptor",
    "Notification",
    "NotificationResult",
    "Resource",
    "ResourceClassification",
    "TestResult",
    "WebhookEnvelope",
    "WebhookResponse",
    # Exceptions
    "IntegrationRuntimeError",
    "ConfigurationError",
    "ConfigValidationError",
    "AuthError",
    "AuthExpired",
    "RateLimitExceeded",
    "IntegrationApiError",
    "IntegrationNetworkError",
    "RetryExhausted",
    "DiscoveryIncomplete",
    "Cancelled",
    "WebhookVerificationFailed",
    "RegistryError",
]
