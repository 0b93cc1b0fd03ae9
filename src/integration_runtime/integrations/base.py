"""
integration_runtime.integrations.base - The Base Integration Contract
=======================================================================

This module defines the contract that ALL connectors implement. It is the
bridge between the compliance platform and a third-party service.

Architecture Context:
    Platform code never talks to a vendor API directly. It talks to a
    BaseIntegration, which owns a TransportClient wired with that instance's
    own Auth Strategy, Rate Governor and Retry Policy.

    ┌──────────────────┐  collect_evidence()  ┌──────────────────────────┐
    │ IntegrationRuntime│ ──────────────────→ │  BaseIntegration          │
    │ / platform code   │                      │   + capability mixins     │
    │                   │ ←── Evidence ─────── │                           │
    └──────────────────┘                       │   transport ──────────┐   │
                                               └───────────────────────┼───┘
                                                                       ▼
                                               ┌───────────────────────────┐
                                               │ TransportClient           │
                                               │  auth → governor → retry  │
                                               └───────────────────────────┘

Capabilities:
    A connector declares what it can do by mixing in capability classes from
    ``integration_runtime.integrations.capabilities``. The set is derived
    when the class is created and exposed as ``capabilities``:

    >>> class Acme(BaseIntegration, EvidenceCollector, WebhookReceiver):
    ...     descriptor = IntegrationDescriptor(identifier="acme", name="Acme")
    ...     ...
    >>> Acme.capabilities
    frozenset({<Capability.EVIDENCE_COLLECTOR>, <Capability.WEBHOOK>})

Configuration:
    Options are validated against ``config_schema`` (an IntegrationSettings
    subclass) in ``__init__``. A bad mapping fails at construction with
    ConfigValidationError, never on first use.
"""

from __future__ import annotations

from abc import ABC
from typing import Any, ClassVar, Mapping, Optional, Union

import httpx
import structlog

from integration_runtime.core.config import (
    IntegrationSettings,
    RuntimeConfig,
    validate_integration_config,
)
from integration_runtime.core.enums import Capability
from integration_runtime.core.exceptions import (
    Cancelled,
    ConfigValidationError,
    IntegrationRuntimeError,
)
from integration_runtime.core.models import Credential, IntegrationDescriptor
from integration_runtime.transport.auth import ApiKeyAuth, AuthStrategy, build_auth_strategy
from integration_runtime.transport.client import TransportClient
from integration_runtime.transport.rate_governor import RateGovernor
from integration_runtime.transport.retry import RetryPolicy

logger = structlog.get_logger()

SettingsInput = Union[Mapping[str, Any], IntegrationSettings, None]


class BaseIntegration(ABC):
    """Abstract base class for every connector.

    What the base class provides:
        - Option validation against ``config_schema``
        - A TransportClient (auth, rate governor, retry) per instance
        - identify(), get_metadata(), validate_connection()
        - Capability derivation from the mixins a subclass inherits

    What subclasses declare:
        - ``descriptor``: the IntegrationDescriptor (required)
        - ``config_schema``: IntegrationSettings subclass (optional)
        - ``default_base_url``: used when options carry no ``endpoint``
        - ``declared_rate_limit``: requests/second the vendor allows
        - ``health_path``: cheapest read-only endpoint

    Attributes:
        integration_id: Registry key. Defaults to the descriptor identifier;
            pass ``instance_id`` to run several instances of one kind.
    """

    descriptor: ClassVar[IntegrationDescriptor]
    config_schema: ClassVar[type[IntegrationSettings]] = IntegrationSettings
    default_base_url: ClassVar[Optional[str]] = None
    declared_rate_limit: ClassVar[Optional[int]] = None
    health_path: ClassVar[Optional[str]] = None
    capabilities: ClassVar[frozenset[Capability]] = frozenset()

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls.capabilities = frozenset(
            vars(klass)["_capability"]
            for klass in cls.__mro__
            if "_capability" in vars(klass)
        )

    def __init__(
        self,
        settings: SettingsInput = None,
        *,
        instance_id: Optional[str] = None,
        runtime_config: Optional[RuntimeConfig] = None,
        credential: Optional[Credential] = None,
        auth: Optional[AuthStrategy] = None,
        governor: Optional[RateGovernor] = None,
        retry_policy: Optional[RetryPolicy] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Validate options and build this instance's transport.

        Args:
            settings: Option mapping (camelCase or snake_case keys) or an
                already-built settings object. Deep-copied.
            instance_id: Registry key override.
            runtime_config: Runtime-wide defaults. Defaults to RuntimeConfig().
            credential: OAuth2/JWT/API-key credential. Takes precedence over
                ``apiKey`` in the options.
            auth: Fully built strategy, bypassing ``create_auth_strategy``.
            governor: Rate governor override (tests inject fake clocks).
            retry_policy: Retry policy override.
            http_client: Shared or mocked httpx client; caller closes it.

        Raises:
            ConfigValidationError: options do not match ``config_schema`` or
                no base URL is available.
        """
        self.integration_id = instance_id or self.descriptor.identifier
        self._runtime_config = runtime_config or RuntimeConfig()
        self._settings = validate_integration_config(
            self.config_schema, settings or {}, integration_id=self.integration_id
        )
        self._credential = credential
        self._logger = logger.bind(
            component="integration", integration_id=self.integration_id
        )

        base_url = self._resolve_base_url()
        self._transport = TransportClient(
            base_url,
            auth=auth if auth is not None else self.create_auth_strategy(),
            governor=governor if governor is not None else self._build_governor(),
            retry_policy=retry_policy or RetryPolicy(**self._runtime_config.retry.model_dump()),
            config=self._runtime_config.transport,
            http_client=http_client,
            name=self.integration_id,
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def settings(self) -> IntegrationSettings:
        """This instance's validated options (secrets stay SecretStr)."""
        return self._settings

    @property
    def transport(self) -> TransportClient:
        return self._transport

    @property
    def runtime_config(self) -> RuntimeConfig:
        return self._runtime_config

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    # =========================================================================
    # Base capability set
    # =========================================================================

    def identify(self) -> IntegrationDescriptor:
        """Return the descriptor, keyed by this instance's id."""
        if self.integration_id == self.descriptor.identifier:
            return self.descriptor
        return self.descriptor.model_copy(update={"identifier": self.integration_id})

    def get_metadata(self) -> dict[str, Any]:
        """Describe this instance for catalogs and diagnostics.

        Never includes credential or webhook secret values.
        """
        descriptor = self.identify()
        governor = self._transport.governor
        auth = self._transport.auth
        return {
            "identifier": descriptor.identifier,
            "name": descriptor.name,
            "version": descriptor.version,
            "author": descriptor.author,
            "category": descriptor.category.value,
            "description": descriptor.description,
            "capabilities": sorted(capability.value for capability in self.capabilities),
            "base_url": self._transport.base_url,
            "auth": auth.kind.value if auth is not None else None,
            "rate_limit": (
                {"capacity": governor.capacity, "refill_rate": governor.refill_rate}
                if governor is not None
                else None
            ),
        }

    async def validate_connection(self) -> bool:
        """Issue the cheapest read-only call and report whether it worked.

        Expected failures (auth, network, API errors, exhausted retries,
        rate limiting) become ``False``. Programming errors propagate.
        """
        path = self.health_path or self._runtime_config.transport.health_path
        try:
            await self._transport.get(path)
        except Cancelled:
            raise
        except IntegrationRuntimeError as exc:
            self._logger.warning(
                "connection_validation_failed",
                path=path,
                error_code=exc.error_code,
                error=exc.message,
            )
            return False
        self._logger.info("connection_validated", path=path)
        return True

    async def aclose(self) -> None:
        """Release the transport (and any token-endpoint clients)."""
        await self._transport.aclose()

    # =========================================================================
    # Construction hooks (subclasses MAY override)
    # =========================================================================

    def create_auth_strategy(self) -> Optional[AuthStrategy]:
        """Build the auth strategy from the credential or ``apiKey`` option."""
        skew = self._runtime_config.auth.refresh_skew_seconds
        if self._credential is not None:
            return build_auth_strategy(
                self._credential, skew_seconds=skew, name=self.integration_id
            )
        if self._settings.api_key is not None:
            return ApiKeyAuth(self._settings.api_key, name=self.integration_id)
        return None

    def _build_governor(self) -> RateGovernor:
        return RateGovernor.from_config(
            self._runtime_config.rate_limit,
            declared_limit=self._settings.rate_limit or self.declared_rate_limit,
            name=self.integration_id,
        )

    def _resolve_base_url(self) -> str:
        if self._settings.endpoint is not None:
            return str(self._settings.endpoint)
        if self.default_base_url:
            return self.default_base_url
        raise ConfigValidationError(
            message=f"Integration '{self.integration_id}' has no endpoint configured",
            integration_id=self.integration_id,
            fields={"endpoint": "Field required"},
        )

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"id={self.integration_id!r}, "
            f"capabilities={sorted(c.value for c in self.capabilities)})"
        )
