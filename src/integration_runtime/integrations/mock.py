"""
integration_runtime.integrations.mock - In-Memory Integration for Testing
===========================================================================

MockIntegration implements every capability set without calling a vendor
API. It is the default connector for tests, examples and local development.

Why a Mock Integration?
    1. **No credentials required**: exercises registry, facade and pipeline
       code without a third-party account.
    2. **Deterministic**: evidence, resources and failures are configured by
       the test.
    3. **Call tracking**: records every capability call for assertions.

Only ``validate_connection`` goes through the real TransportClient (GET on
the health path), so tests can point it at an ``httpx.MockTransport``.

Usage:
    >>> mock = MockIntegration({"webhookSecret": "s3cr3t"})
    >>> mock.set_control_data("CC6.1", [{"status": "pass"}, {"status": "fail"}])
    >>> result = await mock.test_control(Control(id="CC6.1"))
    >>> result.status  # TestStatus.FAIL
    >>> mock.call_history[0]["operation"]  # "collect_evidence"
"""

from __future__ import annotations

import json
from typing import Any, Optional

import structlog

from integration_runtime.core.enums import EvidenceStatus, IntegrationCategory
from integration_runtime.core.exceptions import IntegrationApiError
from integration_runtime.core.models import (
    Control,
    Evidence,
    IntegrationDescriptor,
    Notification,
    NotificationResult,
    Resource,
    TestResult,
    WebhookEnvelope,
    WebhookResponse,
)
from integration_runtime.evidence.pipeline import EvidencePipeline
from integration_runtime.integrations.base import BaseIntegration
from integration_runtime.integrations.capabilities import (
    CloudProvider,
    EvidenceCollector,
    NotificationProvider,
    WebhookReceiver,
)

logger = structlog.get_logger()


def _status_of(item: Any) -> EvidenceStatus:
    """Read ``item["status"]``; anything unrecognised raises (→ error evidence)."""
    return EvidenceStatus(item["status"])


class MockIntegration(
    BaseIntegration,
    EvidenceCollector,
    CloudProvider,
    NotificationProvider,
    WebhookReceiver,
):
    """Configurable connector implementing all four capability sets.

    Attributes:
        pipeline: Normalizes configured control data into Evidence.
        sent_notifications: Every notification accepted for delivery.
        received_webhooks: Every verified webhook handed to the handler.
    """

    descriptor = IntegrationDescriptor(
        identifier="mock",
        name="Mock Integration",
        version="0.1.0",
        author="integration-runtime",
        category=IntegrationCategory.OTHER,
        description="In-memory connector for tests and examples",
    )
    default_base_url = "https://mock.integration.invalid"

    def __init__(self, *args: Any, pipeline: Optional[EvidencePipeline] = None, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.pipeline = pipeline or EvidencePipeline()

        # --- Configured data ---
        self._control_data: dict[str, list[Any]] = {}
        self._resources: dict[str, list[Resource]] = {}
        self._failing_categories: set[str] = set()
        self._channels: list[str] = ["email", "slack"]

        # --- Call tracking ---
        self._call_history: list[dict[str, Any]] = []
        self.sent_notifications: list[Notification] = []
        self.received_webhooks: list[WebhookEnvelope] = []

        # --- Error simulation ---
        self._should_fail = False
        self._failure_status = 503

        self._logger = logger.bind(component="mock_integration", integration_id=self.integration_id)

    # =========================================================================
    # Test configuration
    # =========================================================================

    @property
    def call_history(self) -> list[dict[str, Any]]:
        """Recorded capability calls: ``{"operation": ..., **arguments}``."""
        return self._call_history

    @property
    def call_count(self) -> int:
        return len(self._call_history)

    def set_control_data(self, control_id: str, items: list[Any]) -> None:
        """Raw items returned for ``control_id``; each needs a ``status`` key."""
        self._control_data[control_id] = list(items)

    def set_resources(self, category: str, resources: list[Resource]) -> None:
        self._resources[category] = list(resources)

    def fail_category(self, category: str) -> None:
        """Make ``list_resources(category)`` raise a 503 IntegrationApiError."""
        self._failing_categories.add(category)

    def set_channels(self, channels: list[str]) -> None:
        self._channels = list(channels)

    def set_should_fail(self, should_fail: bool, status_code: int = 503) -> None:
        """Make evidence collection and notification sending raise."""
        self._should_fail = should_fail
        self._failure_status = status_code

    def clear_history(self) -> None:
        self._call_history.clear()

    # =========================================================================
    # Evidence Collector
    # =========================================================================

    async def collect_evidence(self, control_id: str) -> list[Evidence]:
        self._record("collect_evidence", control_id=control_id)
        self._maybe_fail("collect_evidence")
        return self.pipeline.normalize(
            self._control_data.get(control_id, []),
            control_id,
            _status_of,
            title=f"Mock evidence for {control_id}",
            source=self.integration_id,
        )

    def get_supported_controls(self) -> list[str]:
        return sorted(self._control_data)

    # =========================================================================
    # Cloud Provider
    # =========================================================================

    def resource_categories(self) -> list[str]:
        return sorted(set(self._resources) | self._failing_categories)

    async def list_resources(self, category: str) -> list[Resource]:
        self._record("list_resources", category=category)
        if category in self._failing_categories:
            raise IntegrationApiError(
                message=f"Mock failure listing '{category}'",
                status_code=503,
            )
        return list(self._resources.get(category, []))

    async def test_security_control(self, control: Control) -> TestResult:
        self._record("test_security_control", control_id=control.id)
        return await self.test_control(control)

    # =========================================================================
    # Notification
    # =========================================================================

    async def send_notification(self, notification: Notification) -> NotificationResult:
        self._record("send_notification", channel=notification.channel)
        self._maybe_fail("send_notification")
        if notification.channel not in self._channels:
            return NotificationResult(
                delivered=False,
                channel=notification.channel,
                detail=f"Unsupported channel '{notification.channel}'",
            )
        self.sent_notifications.append(notification)
        return NotificationResult(
            delivered=True,
            channel=notification.channel,
            provider_message_id=f"mock-{len(self.sent_notifications)}",
        )

    def get_supported_channels(self) -> list[str]:
        return list(self._channels)

    # =========================================================================
    # Webhook
    # =========================================================================

    async def handle_webhook(self, envelope: WebhookEnvelope) -> WebhookResponse:
        """Accept JSON deliveries; ``{"control_id", "status"}`` yields evidence."""
        self._record("handle_webhook", body_bytes=len(envelope.body))
        self.received_webhooks.append(envelope)
        try:
            payload = json.loads(envelope.body)
        except ValueError:
            return WebhookResponse(status_code=400, body={"error": "invalid JSON"})

        evidence: list[Evidence] = []
        if isinstance(payload, dict) and "control_id" in payload:
            evidence = self.pipeline.normalize(
                [payload],
                str(payload["control_id"]),
                _status_of,
                title="Mock webhook evidence",
                source=self.integration_id,
            )
        event = payload.get("event") if isinstance(payload, dict) else None
        return WebhookResponse(
            status_code=200,
            body={"received": True, "event": event},
            evidence=tuple(evidence),
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _record(self, operation: str, **arguments: Any) -> None:
        self._call_history.append({"operation": operation, **arguments})
        self._logger.debug("mock_operation_called", operation=operation)

    def _maybe_fail(self, operation: str) -> None:
        if self._should_fail:
            raise IntegrationApiError(
                message=f"Mock {operation} failure",
                status_code=self._failure_status,
            )
