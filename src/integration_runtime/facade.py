"""
integration_runtime.facade - IntegrationRuntime Top-Level Facade
==================================================================

This module implements the IntegrationRuntime facade: the single entry
point the compliance platform uses. It ties the factory, the registry, the
webhook dispatcher and the evidence pipeline together and owns their
lifecycle.

Architecture Context:
    ┌──────────────────────────────────────────────────┐
    │            IntegrationRuntime (Facade)            │
    │                                                   │
    │  ┌─────────────────────────────────────────────┐ │
    │  │  IntegrationFactory   IntegrationRegistry    │ │
    │  │  (kinds → classes)    (ids → instances)      │ │
    │  └─────────────────────┬───────────────────────┘ │
    │                        │                          │
    │  ┌─────────────────────▼───────────────────────┐ │
    │  │  Integrations (capability mixins)            │ │
    │  │  evidence · cloud · notification · webhook   │ │
    │  └─────────────────────┬───────────────────────┘ │
    │                        │                          │
    │  ┌─────────────────────▼───────────────────────┐ │
    │  │  TransportClient per instance                │ │
    │  │  AuthStrategy · RateGovernor · RetryPolicy   │ │
    │  └─────────────────────────────────────────────┘ │
    │                                                   │
    │  WebhookDispatcher (inbound)   EvidencePipeline   │
    └──────────────────────────────────────────────────┘

Usage:
    >>> async with IntegrationRuntime(load_config()) as runtime:
    ...     runtime.register_kind(AcmeCloudIntegration)
    ...     await runtime.add_integration("acme-cloud", {"apiKey": "..."})
    ...     result = await runtime.test_control("acme-cloud", Control(id="CC6.1"))
    ...     # shutdown() drains the registry on exit
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Union

import structlog

from integration_runtime.core.config import IntegrationSettings, RuntimeConfig
from integration_runtime.core.enums import Capability
from integration_runtime.core.exceptions import RegistryError, WebhookVerificationFailed
from integration_runtime.core.logging import configure_logging
from integration_runtime.core.models import (
    Control,
    Evidence,
    Notification,
    NotificationResult,
    TestResult,
    WebhookEnvelope,
    WebhookResponse,
)
from integration_runtime.evidence.pipeline import EvidencePipeline
from integration_runtime.integrations.base import BaseIntegration
from integration_runtime.integrations.factory import IntegrationFactory
from integration_runtime.integrations.registry import IntegrationRegistry
from integration_runtime.webhooks.dispatcher import WebhookDispatcher


# =============================================================================
# Logger
# =============================================================================
logger = structlog.get_logger()


class IntegrationRuntime:
    """Top-level facade for the integration runtime.

    Lifecycle:
        1. ``IntegrationRuntime(config)`` — Instantiate with configuration
        2. ``await initialize()`` — Configure logging, mark ready
        3. ``register_kind(cls)`` / ``await add_integration(kind, options)``
        4. Platform operations (collect_evidence, test_control, ...)
        5. ``await shutdown()`` — Close and remove every instance

    Attributes:
        _config: Runtime configuration.
        _registry: Live integration instances.
        _factory: Constructible integration kinds.
        _dispatcher: Signature gate for inbound webhooks.
        _pipeline: Shared evidence normalizer/aggregator.
        _initialized: Whether initialize() has been called.
    """

    def __init__(
        self,
        config: Optional[RuntimeConfig] = None,
        *,
        registry: Optional[IntegrationRegistry] = None,
        factory: Optional[IntegrationFactory] = None,
        dispatcher: Optional[WebhookDispatcher] = None,
        pipeline: Optional[EvidencePipeline] = None,
    ) -> None:
        """Initialize the facade.

        Args:
            config: Runtime configuration. Defaults to RuntimeConfig() which
                reads INTEGRATION_RUNTIME_* environment variables.
            registry: Optional pre-built registry.
            factory: Optional pre-built factory. Defaults to one sharing
                ``config``.
            dispatcher: Optional webhook dispatcher.
            pipeline: Optional evidence pipeline (injected clocks in tests).
        """
        self._config = config or RuntimeConfig()
        self._registry = registry or IntegrationRegistry()
        self._factory = factory or IntegrationFactory(self._config)
        self._dispatcher = dispatcher or WebhookDispatcher()
        self._pipeline = pipeline or EvidencePipeline()

        self._initialized = False
        self._logger = logger.bind(component="integration_runtime")

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> RuntimeConfig:
        return self._config

    @property
    def registry(self) -> IntegrationRegistry:
        return self._registry

    @property
    def factory(self) -> IntegrationFactory:
        return self._factory

    @property
    def dispatcher(self) -> WebhookDispatcher:
        return self._dispatcher

    @property
    def pipeline(self) -> EvidencePipeline:
        return self._pipeline

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # =========================================================================
    # Lifecycle Management
    # =========================================================================

    async def initialize(self) -> None:
        """Prepare the runtime. Idempotent."""
        if self._initialized:
            self._logger.debug("runtime_already_initialized")
            return

        if self._config.configure_logging:
            configure_logging(self._config.log_level, json_output=self._config.log_json)

        self._initialized = True
        self._logger.info("runtime_initialized", environment=self._config.environment)

    async def shutdown(self) -> None:
        """Close and remove every registered integration. Idempotent."""
        if not self._initialized:
            self._logger.debug("runtime_not_initialized_skipping_shutdown")
            return

        self._logger.info("runtime_shutting_down", integration_count=len(self._registry))
        await self._registry.drain()
        self._initialized = False
        self._logger.info("runtime_shutdown_complete")

    async def __aenter__(self) -> IntegrationRuntime:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.shutdown()

    # =========================================================================
    # Integration Management
    # =========================================================================

    def register_kind(self, integration_cls: type[BaseIntegration]) -> None:
        """Make a connector class constructible by its descriptor identifier."""
        self._factory.register(integration_cls)

    async def add_integration(
        self,
        kind: str,
        settings: Union[Mapping[str, Any], IntegrationSettings, None] = None,
        *,
        instance_id: Optional[str] = None,
        validate: bool = False,
        **kwargs: Any,
    ) -> BaseIntegration:
        """Build an instance of ``kind`` and register it.

        Args:
            kind: Registered integration kind.
            settings: Option mapping, validated before construction.
            instance_id: Registry key override.
            validate: Also run validate_connection() and log the outcome.
                A failed check does not prevent registration.
            **kwargs: Passed to the integration constructor.

        Raises:
            RuntimeError: If the runtime has not been initialized.
            RegistryError: unknown kind or duplicate id.
            ConfigValidationError: invalid options.
        """
        self._ensure_initialized()
        integration = self._factory.create(kind, settings, instance_id=instance_id, **kwargs)
        try:
            self._registry.register(integration)
        except RegistryError:
            await integration.aclose()
            raise

        if validate:
            connected = await integration.validate_connection()
            self._logger.info(
                "integration_connection_checked",
                integration_id=integration.integration_id,
                connected=connected,
            )
        return integration

    def register_integration(self, integration: BaseIntegration) -> None:
        """Register an instance built outside the factory."""
        self._ensure_initialized()
        self._registry.register(integration)

    async def remove_integration(self, integration_id: str) -> None:
        self._ensure_initialized()
        await self._registry.unregister(integration_id)

    # =========================================================================
    # Platform Operations
    # =========================================================================

    async def collect_evidence(self, integration_id: str, control_id: str) -> list[Evidence]:
        """Collect evidence for ``control_id`` from an evidence collector."""
        self._ensure_initialized()
        integration = self._registry.require(integration_id, Capability.EVIDENCE_COLLECTOR)
        evidence: list[Evidence] = await integration.collect_evidence(control_id)  # type: ignore[attr-defined]
        self._logger.info(
            "evidence_collected",
            integration_id=integration_id,
            control_id=control_id,
            count=len(evidence),
        )
        return evidence

    async def test_control(self, integration_id: str, control: Control) -> TestResult:
        """Run a control test on an evidence collector or cloud provider.

        Evidence collectors are preferred; a cloud-provider-only integration
        runs ``test_security_control``.

        Raises:
            RegistryError: unknown id, or neither capability is supported.
        """
        self._ensure_initialized()
        integration = self._registry.get(integration_id)
        if Capability.EVIDENCE_COLLECTOR in integration.capabilities:
            result: TestResult = await integration.test_control(control)  # type: ignore[attr-defined]
        elif Capability.CLOUD_PROVIDER in integration.capabilities:
            result = await integration.test_security_control(control)  # type: ignore[attr-defined]
        else:
            raise RegistryError(
                message=f"Integration '{integration_id}' cannot test controls",
                integration_id=integration_id,
                error_code="CAPABILITY_NOT_SUPPORTED",
                details={
                    "capability": [
                        Capability.EVIDENCE_COLLECTOR.value,
                        Capability.CLOUD_PROVIDER.value,
                    ]
                },
            )
        self._logger.info(
            "control_tested",
            integration_id=integration_id,
            control_id=control.id,
            status=result.status.value,
            evidence_count=len(result.evidence),
        )
        return result

    async def send_notification(
        self, integration_id: str, notification: Notification
    ) -> NotificationResult:
        self._ensure_initialized()
        integration = self._registry.require(integration_id, Capability.NOTIFICATION)
        result: NotificationResult = await integration.send_notification(notification)  # type: ignore[attr-defined]
        self._logger.info(
            "notification_sent",
            integration_id=integration_id,
            channel=notification.channel,
            delivered=result.delivered,
        )
        return result

    async def handle_webhook(
        self, integration_id: str, envelope: WebhookEnvelope
    ) -> WebhookResponse:
        """Verify and dispatch an inbound webhook.

        A delivery that fails verification is answered with the rejection
        status (401) and never reaches the integration's handler.

        Raises:
            RegistryError: unknown id or the integration does not receive
                webhooks.
        """
        self._ensure_initialized()
        integration = self._registry.require(integration_id, Capability.WEBHOOK)
        try:
            return await self._dispatcher.dispatch(integration, envelope)
        except WebhookVerificationFailed as exc:
            return WebhookResponse(status_code=exc.status_code, body={"error": exc.error_code})

    # =========================================================================
    # Internal Helpers
    # =========================================================================

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError(
                "IntegrationRuntime has not been initialized. "
                "Call await runtime.initialize() or use "
                "'async with IntegrationRuntime() as runtime:'"
            )

    def __repr__(self) -> str:
        return (
            f"IntegrationRuntime("
            f"initialized={self._initialized}, "
            f"integrations={len(self._registry)})"
        )
