"""
integration_runtime.transport - Outbound Request Governance
=============================================================

Everything a connector needs to call a third-party API safely:

    - auth:           ApiKeyAuth, OAuth2Auth, JWTAuth (single-flight refresh)
    - rate_governor:  RateGovernor token bucket, Retry-After parsing
    - retry:          RetryPolicy with exponential backoff and jitter
    - cancellation:   CancellationToken for cooperative cancellation
    - client:         TransportClient composing all of the above on httpx

Dependency Rule:
    transport/ depends only on core/.
"""

from integration_runtime.transport.auth import (
    ApiKeyAuth,
    AuthStrategy,
    JWTAuth,
    OAuth2Auth,
    build_auth_strategy,
)
from integration_runtime.transport.cancellation import CancellationToken
from integration_runtime.transport.client import IDEMPOTENT_METHODS, TransportClient
from integration_runtime.transport.rate_governor import (
    RateGovernor,
    RateState,
    parse_retry_after,
)
from integration_runtime.transport.retry import RetryPolicy, is_transient

__all__ = [
    "AuthStrategy",
    "ApiKeyAuth",
    "OAuth2Auth",
    "JWTAuth",
    "build_auth_strategy",
    "CancellationToken",
    "RateGovernor",
    "RateState",
    "parse_retry_after",
    "RetryPolicy",
    "is_transient",
    "TransportClient",
    "IDEMPOTENT_METHODS",
]
