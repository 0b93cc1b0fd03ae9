"""
integration_runtime.integrations.capabilities - Specialized Capability Sets
=============================================================================

Each mixin below is one capability set. A connector inherits BaseIntegration
plus any number of these; BaseIntegration derives ``capabilities`` from the
mixins present in the class hierarchy.

    Mixin                 Capability            Connector implements
    ───────────────────   ───────────────────   ────────────────────────────────
    EvidenceCollector     EVIDENCE_COLLECTOR    collect_evidence,
                                                get_supported_controls
    CloudProvider         CLOUD_PROVIDER        resource_categories,
                                                list_resources,
                                                test_security_control
    NotificationProvider  NOTIFICATION          send_notification,
                                                get_supported_channels
    WebhookReceiver       WEBHOOK               handle_webhook
                                                (+ webhook_scheme ClassVar)

Mixins assume they are combined with BaseIntegration (they use
``self.integration_id``, ``self.settings`` and the structlog logger it binds).
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import ClassVar, Iterable, Optional

import structlog

from integration_runtime.core.config import IntegrationSettings
from integration_runtime.core.enums import Capability
from integration_runtime.core.exceptions import Cancelled, DiscoveryIncomplete
from integration_runtime.core.models import (
    Control,
    Evidence,
    Notification,
    NotificationResult,
    Resource,
    ResourceClassification,
    TestResult,
    WebhookEnvelope,
    WebhookResponse,
)
from integration_runtime.evidence.pipeline import aggregate
from integration_runtime.webhooks.verifier import WebhookSignatureScheme, WebhookVerifier

logger = structlog.get_logger()


# =============================================================================
# Evidence Collector
# =============================================================================
class EvidenceCollector(ABC):
    """Collects compliance evidence for platform-supplied control ids."""

    _capability: ClassVar[Capability] = Capability.EVIDENCE_COLLECTOR

    @abstractmethod
    async def collect_evidence(self, control_id: str) -> list[Evidence]:
        """Fetch and normalize the evidence supporting ``control_id``."""
        ...

    @abstractmethod
    def get_supported_controls(self) -> list[str]:
        """Control ids this connector can collect evidence for."""
        ...

    async def test_control(self, control: Control) -> TestResult:
        """Collect evidence for ``control`` and fold it into a verdict."""
        evidence = await self.collect_evidence(control.id)
        return aggregate(control.id, evidence)


# =============================================================================
# Cloud Provider
# =============================================================================
class CloudProvider(ABC):
    """Discovers and classifies cloud resources, tests security controls."""

    _capability: ClassVar[Capability] = Capability.CLOUD_PROVIDER

    integration_id: str

    @abstractmethod
    def resource_categories(self) -> list[str]:
        """All resource categories this provider can list (e.g. "bucket")."""
        ...

    @abstractmethod
    async def list_resources(self, category: str) -> list[Resource]:
        """List every resource of one category."""
        ...

    @abstractmethod
    async def test_security_control(self, control: Control) -> TestResult:
        """Evaluate a security control against the provider's resources."""
        ...

    async def discover_resources(
        self, categories: Optional[Iterable[str]] = None
    ) -> list[Resource]:
        """List resources across categories concurrently.

        Args:
            categories: Subset to list. None means ``resource_categories()``.

        Returns:
            All resources, grouped in category order.

        Raises:
            DiscoveryIncomplete: one or more categories failed. Resources from
                the categories that succeeded are on ``partial_results``.
            Cancelled: discovery was cancelled.
        """
        wanted = list(categories) if categories is not None else self.resource_categories()
        outcomes = await asyncio.gather(
            *(self.list_resources(category) for category in wanted),
            return_exceptions=True,
        )

        discovered: list[Resource] = []
        failures: dict[str, BaseException] = {}
        for category, outcome in zip(wanted, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, Cancelled) or not isinstance(outcome, Exception):
                    raise outcome
                failures[category] = outcome
                logger.warning(
                    "discovery_category_failed",
                    integration_id=self.integration_id,
                    category=category,
                    error_type=type(outcome).__name__,
                )
                continue
            discovered.extend(outcome)

        if failures:
            raise DiscoveryIncomplete(
                message=(
                    f"Resource discovery for '{self.integration_id}' failed for "
                    + ", ".join(sorted(failures))
                ),
                partial_results=discovered,
                failures=failures,
                details={"integration_id": self.integration_id},
            )

        logger.info(
            "resources_discovered",
            integration_id=self.integration_id,
            categories=len(wanted),
            count=len(discovered),
        )
        return discovered

    async def classify_resource(self, resource: Resource) -> ResourceClassification:
        """Classify a resource from its metadata.

        Default reads ``classification``, ``sensitivity`` and ``tags`` from
        ``resource.metadata`` and falls back to the resource kind. Providers
        with richer data override this.
        """
        metadata = resource.metadata
        tags = metadata.get("tags") or ()
        if isinstance(tags, dict):
            tags = [f"{key}={value}" for key, value in tags.items()]
        return ResourceClassification(
            resource_id=resource.id,
            classification=str(metadata.get("classification", resource.kind)),
            sensitivity=str(metadata.get("sensitivity", "unknown")),
            tags=tuple(str(tag) for tag in tags),
        )


# =============================================================================
# Notification
# =============================================================================
class NotificationProvider(ABC):
    """Delivers notifications to a channel (email, chat, pager, ...)."""

    _capability: ClassVar[Capability] = Capability.NOTIFICATION

    @abstractmethod
    async def send_notification(self, notification: Notification) -> NotificationResult:
        ...

    @abstractmethod
    def get_supported_channels(self) -> list[str]:
        ...


# =============================================================================
# Webhook
# =============================================================================
class WebhookReceiver(ABC):
    """Receives signed inbound webhooks.

    Override ``webhook_scheme`` to match the vendor's signing convention.
    The shared secret comes from the ``webhookSecret`` option.
    """

    _capability: ClassVar[Capability] = Capability.WEBHOOK

    webhook_scheme: ClassVar[WebhookSignatureScheme] = WebhookSignatureScheme()

    integration_id: str
    settings: IntegrationSettings

    @abstractmethod
    async def handle_webhook(self, envelope: WebhookEnvelope) -> WebhookResponse:
        """Process a delivery whose signature has already been verified."""
        ...

    async def validate_webhook_signature(self, envelope: WebhookEnvelope) -> bool:
        """Verify ``envelope`` with the declared scheme and configured secret.

        An instance without ``webhookSecret`` rejects every delivery.
        """
        secret = self.settings.webhook_secret
        if secret is None:
            logger.warning(
                "webhook_secret_missing",
                integration_id=self.integration_id,
            )
            return False
        return WebhookVerifier(self.webhook_scheme).verify(envelope, secret)
