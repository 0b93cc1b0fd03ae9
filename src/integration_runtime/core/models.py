"""
integration_runtime.core.models - Core Data Models
====================================================

The value records that flow between connectors, the runtime and the
compliance platform. Everything here is a Pydantic model; records the
platform receives back (Evidence, TestResult, Resource, ...) are frozen so
that once emitted they cannot be mutated.

Model Map:
    IntegrationDescriptor   → who a connector is (identity card)
    Credential              → secret material held by an Auth Strategy
    Resource                → an asset discovered by a Cloud-Provider
    ResourceClassification  → a connector's verdict on what a Resource is
    Control                 → opaque compliance requirement from the platform
    Evidence                → one normalized fact tied to a control
    TestResult              → the folded verdict for a control
    Notification(Result)    → outbound message and its delivery receipt
    WebhookEnvelope         → raw inbound webhook (bytes + headers)
    WebhookResponse         → what we answer the sender with

Data Flow:
    connector raw items ──normalize()──→ Evidence[] ──aggregate()──→ TestResult
    inbound bytes ──WebhookEnvelope──verify()──→ handler ──→ WebhookResponse
"""

from __future__ import annotations

import copy
import re
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_serializer, field_validator

from integration_runtime.core.enums import (
    AuthKind,
    EvidenceStatus,
    EvidenceType,
    IntegrationCategory,
    TestStatus,
)


def _generate_id() -> str:
    """Generate a UUID4 string identifier."""
    return str(uuid4())


def _now() -> datetime:
    """Current UTC timestamp. Every timestamp in the runtime is UTC."""
    return datetime.now(timezone.utc)


def _freeze(value: Any) -> Any:
    """Detached read-only copy of a payload: mappings become
    MappingProxyType, lists and tuples become tuples, sets frozensets."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(item) for item in value)
    return copy.deepcopy(value)


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, (tuple, frozenset)):
        return [_thaw(item) for item in value]
    return value


# Semantic version: MAJOR.MINOR.PATCH with optional pre-release / build parts.
_SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)


# =============================================================================
# Integration Descriptor
# =============================================================================
# The identifier is the registry key. It must be stable across releases of
# a connector, because the platform stores it alongside collected evidence.
# =============================================================================
class IntegrationDescriptor(BaseModel):
    """Identity information for an integration.

    Attributes:
        identifier: Unique, stable identifier (registry key), e.g. "acme-cloud".
        name: Human-readable display name.
        version: Semantic version of the connector implementation.
        author: Maintainer of the connector.
        category: Primary category for discovery listings.
        description: Optional longer description.

    Example:
        >>> IntegrationDescriptor(
        ...     identifier="acme-cloud",
        ...     name="Acme Cloud",
        ...     version="1.2.0",
        ...     author="Platform Team",
        ...     category=IntegrationCategory.CLOUD_PROVIDER,
        ... )
    """

    model_config = ConfigDict(frozen=True)

    identifier: str = Field(min_length=1, description="Unique, stable integration id")
    name: str = Field(min_length=1, description="Display name")
    version: str = Field(default="0.1.0", description="Semantic version")
    author: str = Field(default="unknown", description="Connector author/maintainer")
    category: IntegrationCategory = Field(
        default=IntegrationCategory.OTHER,
        description="Primary category for discovery",
    )
    description: Optional[str] = Field(default=None, description="Optional description")

    @field_validator("identifier")
    @classmethod
    def _identifier_has_no_whitespace(cls, value: str) -> str:
        if value.strip() != value or any(ch.isspace() for ch in value):
            raise ValueError("identifier must not contain whitespace")
        return value

    @field_validator("version")
    @classmethod
    def _version_is_semver(cls, value: str) -> str:
        if not _SEMVER_RE.match(value):
            raise ValueError(f"version '{value}' is not a semantic version")
        return value


# =============================================================================
# Credential
# =============================================================================
# Secrets are SecretStr so that repr(), str() and model_dump_json() print
# '**********' instead of the value. Only Auth Strategies call
# get_secret_value().
# =============================================================================
class Credential(BaseModel):
    """Secret material plus its auth kind and optional expiry.

    Attributes:
        kind: Which auth scheme this credential belongs to.
        secret: The API key, access token, or JWT signing key.
        refresh_secret: OAuth2 refresh token (None for other kinds).
        expires_at: When ``secret`` stops being valid (None = never).
    """

    kind: AuthKind
    secret: SecretStr
    refresh_secret: Optional[SecretStr] = None
    expires_at: Optional[datetime] = None

    def expires_within(self, seconds: float, *, now: Optional[datetime] = None) -> bool:
        """True if the credential expires in less than ``seconds`` from now."""
        if self.expires_at is None:
            return False
        current = now or _now()
        return (self.expires_at - current).total_seconds() < seconds


# =============================================================================
# Cloud Resources
# =============================================================================
class Resource(BaseModel):
    """A third-party asset discovered by a Cloud-Provider integration.

    Attributes:
        id: Provider-side identifier.
        kind: Resource category (e.g. "bucket", "droplet", "database").
        metadata: Provider-specific attributes, passed through untouched.
        discovered_at: When discovery observed the resource.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    kind: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    discovered_at: datetime = Field(default_factory=_now)


class ResourceClassification(BaseModel):
    """A connector's classification of a discovered resource."""

    model_config = ConfigDict(frozen=True)

    resource_id: str
    classification: str
    sensitivity: str = "unknown"
    tags: tuple[str, ...] = ()


class Control(BaseModel):
    """An opaque compliance control owned by the calling platform.

    The runtime only reads ``id`` and passes ``metadata`` through.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Evidence & TestResult
# =============================================================================
# Evidence is created only by the EvidencePipeline. Each record is frozen;
# TestResult keeps its evidence in a tuple so the ordered sequence is
# immutable as well.
# =============================================================================
class Evidence(BaseModel):
    """One normalized fact collected for a control.

    Attributes:
        evidence_id: Unique id for this record.
        control_id: The control this evidence supports.
        type: Automated or manual collection.
        title: Short summary shown in the platform.
        description: Longer explanation.
        timestamp: When the evidence was normalized.
        data: Raw connector payload the verdict was derived from, stored as
            a detached read-only copy (mappings as MappingProxyType,
            sequences as tuples).
        status: Per-item verdict from the connector's classifier.
        source: Identifier of the integration that produced it.
    """

    model_config = ConfigDict(frozen=True)

    evidence_id: str = Field(default_factory=_generate_id)
    control_id: str
    type: EvidenceType = EvidenceType.AUTOMATED
    title: str
    description: str = ""
    timestamp: datetime = Field(default_factory=_now)
    data: Any = None
    status: EvidenceStatus
    source: Optional[str] = None

    @field_validator("data")
    @classmethod
    def _freeze_data(cls, value: Any) -> Any:
        return _freeze(value)

    @field_serializer("data")
    def _serialize_data(self, value: Any) -> Any:
        return _thaw(value)


class TestResult(BaseModel):
    """Aggregated verdict for one control, derived from its evidence."""

    __test__ = False  # not a pytest test class

    model_config = ConfigDict(frozen=True)

    control_id: str
    status: TestStatus
    evidence: tuple[Evidence, ...] = ()
    tested_at: datetime = Field(default_factory=_now)


# =============================================================================
# Notifications
# =============================================================================
class Notification(BaseModel):
    """An outbound message for a Notification integration."""

    model_config = ConfigDict(frozen=True)

    channel: str
    title: str
    message: str
    severity: str = "info"
    recipients: tuple[str, ...] = ()
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationResult(BaseModel):
    """Delivery receipt returned by ``send_notification``."""

    model_config = ConfigDict(frozen=True)

    delivered: bool
    channel: str
    provider_message_id: Optional[str] = None
    detail: Optional[str] = None


# =============================================================================
# Webhooks
# =============================================================================
# The envelope keeps the body as the exact bytes received. Nothing in the
# runtime parses and re-serializes it before verification.
# =============================================================================
class WebhookEnvelope(BaseModel):
    """A raw inbound webhook delivery.

    Attributes:
        body: Raw request body bytes, exactly as received.
        headers: Request headers (looked up case-insensitively).
        received_at: Arrival timestamp.
    """

    model_config = ConfigDict(frozen=True)

    body: bytes
    headers: dict[str, str] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=_now)

    @classmethod
    def from_request(
        cls,
        body: bytes,
        headers: Mapping[str, str],
        received_at: Optional[datetime] = None,
    ) -> WebhookEnvelope:
        """Build an envelope from a web framework's body and header mapping."""
        data: dict[str, Any] = {"body": body, "headers": dict(headers.items())}
        if received_at is not None:
            data["received_at"] = received_at
        return cls(**data)

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


class WebhookResponse(BaseModel):
    """Answer to a webhook sender. Non-2xx tells the sender to retry."""

    model_config = ConfigDict(frozen=True)

    status_code: int = Field(default=200, ge=100, le=599)
    body: Optional[dict[str, Any]] = None
    evidence: tuple[Evidence, ...] = ()
