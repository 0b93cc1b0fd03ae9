"""
Tests for integration_runtime.facade (IntegrationRuntime)
===========================================================

These tests verify the top-level facade:
    - Lifecycle (initialize, shutdown, async context manager, idempotency)
    - Integration management (register_kind, add/remove, duplicates)
    - Platform operations routed by capability
    - Webhook rejection answered with 401
    - Operations before initialize() raise RuntimeError
"""

import httpx
import pytest

from integration_runtime import IntegrationRuntime
from integration_runtime.core.config import RuntimeConfig
from integration_runtime.core.enums import Capability, EvidenceStatus, TestStatus
from integration_runtime.core.exceptions import ConfigValidationError, RegistryError
from integration_runtime.core.models import (
    Control,
    IntegrationDescriptor,
    Notification,
    Resource,
    TestResult,
    WebhookEnvelope,
)
from integration_runtime.integrations.base import BaseIntegration
from integration_runtime.integrations.capabilities import CloudProvider
from integration_runtime.integrations.mock import MockIntegration
from integration_runtime.webhooks.verifier import WebhookVerifier

SECRET = "whsec-facade-secret"


class CloudOnly(BaseIntegration, CloudProvider):
    """Cloud provider without evidence collection."""

    descriptor = IntegrationDescriptor(identifier="cloud-only", name="Cloud Only")
    default_base_url = "https://cloud.example"

    def resource_categories(self) -> list[str]:
        return ["bucket"]

    async def list_resources(self, category: str) -> list[Resource]:
        return [Resource(id="b1", kind="bucket")]

    async def test_security_control(self, control: Control) -> TestResult:
        return TestResult(control_id=control.id, status=TestStatus.PASS)


class Bare(BaseIntegration):
    descriptor = IntegrationDescriptor(identifier="bare", name="Bare")
    default_base_url = "https://bare.example"


# =============================================================================
# Test: Lifecycle
# =============================================================================
class TestLifecycle:
    """initialize() / shutdown() behavior."""

    async def test_initialize_and_shutdown(self) -> None:
        runtime = IntegrationRuntime(RuntimeConfig())
        assert runtime.is_initialized is False
        await runtime.initialize()
        assert runtime.is_initialized is True
        await runtime.shutdown()
        assert runtime.is_initialized is False

    async def test_idempotent(self) -> None:
        runtime = IntegrationRuntime(RuntimeConfig())
        await runtime.initialize()
        await runtime.initialize()
        await runtime.shutdown()
        await runtime.shutdown()

    async def test_context_manager_drains_registry(self) -> None:
        async with IntegrationRuntime(RuntimeConfig()) as runtime:
            runtime.register_kind(MockIntegration)
            await runtime.add_integration("mock")
            assert len(runtime.registry) == 1
        assert len(runtime.registry) == 0
        assert runtime.is_initialized is False

    async def test_operations_require_initialize(self) -> None:
        runtime = IntegrationRuntime(RuntimeConfig())
        with pytest.raises(RuntimeError, match="not been initialized"):
            await runtime.collect_evidence("mock", "CC6.1")
        with pytest.raises(RuntimeError):
            await runtime.add_integration("mock")

    def test_repr(self) -> None:
        assert "initialized=False" in repr(IntegrationRuntime(RuntimeConfig()))


# =============================================================================
# Test: Integration Management
# =============================================================================
class TestIntegrationManagement:
    """register_kind / add_integration / remove_integration."""

    async def test_add_integration(self, runtime) -> None:
        integration = await runtime.add_integration("mock", {"webhookSecret": SECRET})
        assert runtime.registry.get("mock") is integration

    async def test_add_several_instances_of_one_kind(self, runtime) -> None:
        await runtime.add_integration("mock", instance_id="mock-us")
        await runtime.add_integration("mock", instance_id="mock-eu")
        assert runtime.registry.ids == ["mock-us", "mock-eu"]

    async def test_duplicate_id_rejected(self, runtime) -> None:
        await runtime.add_integration("mock")
        with pytest.raises(RegistryError) as exc_info:
            await runtime.add_integration("mock")
        assert exc_info.value.error_code == "DUPLICATE_INTEGRATION"
        assert len(runtime.registry) == 1

    async def test_unknown_kind(self, runtime) -> None:
        with pytest.raises(RegistryError) as exc_info:
            await runtime.add_integration("salesforce")
        assert exc_info.value.error_code == "UNKNOWN_INTEGRATION_KIND"

    async def test_invalid_options(self, runtime) -> None:
        with pytest.raises(ConfigValidationError):
            await runtime.add_integration("mock", {"apiKee": "typo"})
        assert len(runtime.registry) == 0

    async def test_add_with_validation_registers_even_if_unreachable(self, runtime) -> None:
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(404))
        )
        integration = await runtime.add_integration(
            "mock", validate=True, http_client=http_client
        )
        assert "mock" in runtime.registry
        assert await integration.validate_connection() is False
        await http_client.aclose()

    async def test_register_prebuilt_instance(self, runtime) -> None:
        runtime.register_integration(CloudOnly())
        assert "cloud-only" in runtime.registry

    async def test_remove_integration(self, runtime) -> None:
        await runtime.add_integration("mock")
        await runtime.remove_integration("mock")
        assert "mock" not in runtime.registry


# =============================================================================
# Test: Platform Operations
# =============================================================================
class TestPlatformOperations:
    """Operations are routed through capability checks."""

    async def test_collect_evidence(self, runtime) -> None:
        mock = await runtime.add_integration("mock")
        mock.set_control_data("CC6.1", [{"status": "pass"}])
        evidence = await runtime.collect_evidence("mock", "CC6.1")
        assert [e.status for e in evidence] == [EvidenceStatus.PASS]

    async def test_collect_evidence_requires_capability(self, runtime) -> None:
        runtime.register_integration(CloudOnly())
        with pytest.raises(RegistryError) as exc_info:
            await runtime.collect_evidence("cloud-only", "CC6.1")
        assert exc_info.value.error_code == "CAPABILITY_NOT_SUPPORTED"

    async def test_test_control_prefers_evidence_collector(self, runtime) -> None:
        mock = await runtime.add_integration("mock")
        mock.set_control_data("CC6.1", [{"status": "pass"}, {"status": "fail"}])
        result = await runtime.test_control("mock", Control(id="CC6.1"))
        assert result.status == TestStatus.FAIL
        assert mock.call_history[0]["operation"] == "collect_evidence"

    async def test_test_control_falls_back_to_cloud_provider(self, runtime) -> None:
        runtime.register_integration(CloudOnly())
        result = await runtime.test_control("cloud-only", Control(id="CC6.6"))
        assert result.status == TestStatus.PASS

    async def test_test_control_without_capability(self, runtime) -> None:
        runtime.register_integration(Bare())
        with pytest.raises(RegistryError) as exc_info:
            await runtime.test_control("bare", Control(id="CC6.6"))
        assert exc_info.value.error_code == "CAPABILITY_NOT_SUPPORTED"

    async def test_unknown_integration(self, runtime) -> None:
        with pytest.raises(RegistryError) as exc_info:
            await runtime.test_control("ghost", Control(id="CC6.6"))
        assert exc_info.value.error_code == "INTEGRATION_NOT_FOUND"

    async def test_send_notification(self, runtime) -> None:
        await runtime.add_integration("mock")
        result = await runtime.send_notification(
            "mock", Notification(channel="email", title="Audit", message="Ready")
        )
        assert result.delivered is True

    async def test_send_notification_requires_capability(self, runtime) -> None:
        runtime.register_integration(CloudOnly())
        with pytest.raises(RegistryError):
            await runtime.send_notification(
                "cloud-only", Notification(channel="email", title="t", message="m")
            )


# =============================================================================
# Test: Webhooks
# =============================================================================
class TestWebhooks:
    """handle_webhook() verifies before dispatching."""

    async def test_verified_webhook(self, runtime) -> None:
        mock = await runtime.add_integration("mock", {"webhookSecret": SECRET})
        body = b'{"event": "push"}'
        envelope = WebhookEnvelope.from_request(
            body, {"X-Signature": WebhookVerifier().sign(body, SECRET)}
        )
        response = await runtime.handle_webhook("mock", envelope)
        assert response.status_code == 200
        assert len(mock.received_webhooks) == 1

    async def test_bad_signature_answered_with_401(self, runtime) -> None:
        mock = await runtime.add_integration("mock", {"webhookSecret": SECRET})
        envelope = WebhookEnvelope.from_request(b"{}", {"X-Signature": "00" * 32})
        response = await runtime.handle_webhook("mock", envelope)
        assert response.status_code == 401
        assert response.body == {"error": "WEBHOOK_VERIFICATION_FAILED"}
        assert mock.received_webhooks == []

    async def test_webhook_requires_capability(self, runtime) -> None:
        runtime.register_integration(CloudOnly())
        with pytest.raises(RegistryError):
            await runtime.handle_webhook("cloud-only", WebhookEnvelope.from_request(b"", {}))

    async def test_capability_listing(self, runtime) -> None:
        await runtime.add_integration("mock")
        runtime.register_integration(CloudOnly())
        ids = [
            integration.integration_id
            for integration in runtime.registry.list_by_capability(Capability.CLOUD_PROVIDER)
        ]
        assert ids == ["mock", "cloud-only"]
