"""
Tests for integration_runtime.integrations.mock and the capability mixins
===========================================================================

MockIntegration implements every capability set, so these tests double as
coverage for the shared mixin behavior:
    - EvidenceCollector.test_control() aggregation
    - CloudProvider.discover_resources() partial results
    - CloudProvider.classify_resource() defaults
    - NotificationProvider delivery results
    - WebhookReceiver.validate_webhook_signature()
"""

import json

import pytest

from integration_runtime.core.enums import EvidenceStatus, TestStatus
from integration_runtime.core.exceptions import DiscoveryIncomplete, IntegrationApiError
from integration_runtime.core.models import Control, Notification, Resource, WebhookEnvelope
from integration_runtime.integrations.mock import MockIntegration
from integration_runtime.webhooks.verifier import WebhookVerifier

SECRET = "whsec-test-secret"


def signed_envelope(body: bytes, secret: str = SECRET) -> WebhookEnvelope:
    signature = WebhookVerifier().sign(body, secret)
    return WebhookEnvelope.from_request(body, {"X-Signature": signature})


# =============================================================================
# Test: Evidence Collection
# =============================================================================
class TestEvidence:
    """collect_evidence() and test_control()."""

    async def test_collect_evidence_normalizes_items(self, mock_integration) -> None:
        mock_integration.set_control_data("CC6.1", [{"status": "pass", "user": "ada"}])
        evidence = await mock_integration.collect_evidence("CC6.1")

        assert len(evidence) == 1
        assert evidence[0].status == EvidenceStatus.PASS
        assert evidence[0].data == {"status": "pass", "user": "ada"}
        assert evidence[0].source == "mock"
        assert evidence[0].title == "Mock evidence for CC6.1"

    async def test_unknown_control_yields_no_evidence(self, mock_integration) -> None:
        assert await mock_integration.collect_evidence("CC9.9") == []

    @pytest.mark.parametrize(
        "statuses, expected",
        [
            (["pass", "pass"], TestStatus.PASS),
            (["pass", "fail"], TestStatus.FAIL),
            (["pass", "error"], TestStatus.ERROR),
            (["error", "fail"], TestStatus.FAIL),
            (["not-applicable"], TestStatus.NOT_APPLICABLE),
            ([], TestStatus.NOT_APPLICABLE),
        ],
    )
    async def test_test_control_verdicts(self, mock_integration, statuses, expected) -> None:
        mock_integration.set_control_data("CC6.1", [{"status": s} for s in statuses])
        result = await mock_integration.test_control(Control(id="CC6.1"))
        assert result.status == expected
        assert len(result.evidence) == len(statuses)

    async def test_unrecognized_item_becomes_error_evidence(self, mock_integration) -> None:
        mock_integration.set_control_data("CC6.1", [{"status": "pass"}, {"no_status": True}])
        result = await mock_integration.test_control(Control(id="CC6.1"))
        assert [e.status for e in result.evidence] == [EvidenceStatus.PASS, EvidenceStatus.ERROR]
        assert result.status == TestStatus.ERROR

    def test_supported_controls(self, mock_integration) -> None:
        mock_integration.set_control_data("CC7.2", [])
        mock_integration.set_control_data("CC6.1", [])
        assert mock_integration.get_supported_controls() == ["CC6.1", "CC7.2"]

    async def test_should_fail(self, mock_integration) -> None:
        mock_integration.set_should_fail(True, status_code=502)
        with pytest.raises(IntegrationApiError) as exc_info:
            await mock_integration.collect_evidence("CC6.1")
        assert exc_info.value.status_code == 502


# =============================================================================
# Test: Cloud Provider
# =============================================================================
class TestCloudProvider:
    """discover_resources(), classify_resource(), test_security_control()."""

    async def test_discovery_across_categories(self, mock_integration) -> None:
        mock_integration.set_resources("bucket", [Resource(id="b1", kind="bucket")])
        mock_integration.set_resources("database", [Resource(id="d1", kind="database")])
        resources = await mock_integration.discover_resources()
        assert [r.id for r in resources] == ["b1", "d1"]

    async def test_discovery_subset(self, mock_integration) -> None:
        mock_integration.set_resources("bucket", [Resource(id="b1", kind="bucket")])
        mock_integration.set_resources("database", [Resource(id="d1", kind="database")])
        resources = await mock_integration.discover_resources(["database"])
        assert [r.id for r in resources] == ["d1"]

    async def test_partial_failure_keeps_successful_categories(self, mock_integration) -> None:
        mock_integration.set_resources("bucket", [Resource(id="b1", kind="bucket")])
        mock_integration.fail_category("database")

        with pytest.raises(DiscoveryIncomplete) as exc_info:
            await mock_integration.discover_resources()

        error = exc_info.value
        assert [r.id for r in error.partial_results] == ["b1"]
        assert set(error.failures) == {"database"}
        assert isinstance(error.cause, IntegrationApiError)

    async def test_classify_resource_from_metadata(self, mock_integration) -> None:
        resource = Resource(
            id="b1",
            kind="bucket",
            metadata={
                "classification": "customer-data",
                "sensitivity": "high",
                "tags": {"env": "prod"},
            },
        )
        classification = await mock_integration.classify_resource(resource)
        assert classification.resource_id == "b1"
        assert classification.classification == "customer-data"
        assert classification.sensitivity == "high"
        assert classification.tags == ("env=prod",)

    async def test_classify_resource_defaults(self, mock_integration) -> None:
        classification = await mock_integration.classify_resource(Resource(id="q1", kind="queue"))
        assert classification.classification == "queue"
        assert classification.sensitivity == "unknown"
        assert classification.tags == ()

    async def test_security_control(self, mock_integration) -> None:
        mock_integration.set_control_data("CC6.6", [{"status": "fail"}])
        result = await mock_integration.test_security_control(Control(id="CC6.6"))
        assert result.status == TestStatus.FAIL
        operations = [call["operation"] for call in mock_integration.call_history]
        assert operations == ["test_security_control", "collect_evidence"]


# =============================================================================
# Test: Notifications
# =============================================================================
class TestNotifications:
    """send_notification() and channel support."""

    async def test_delivered(self, mock_integration) -> None:
        result = await mock_integration.send_notification(
            Notification(channel="slack", title="Control failed", message="CC6.1 failed")
        )
        assert result.delivered is True
        assert result.provider_message_id == "mock-1"
        assert len(mock_integration.sent_notifications) == 1

    async def test_unsupported_channel(self, mock_integration) -> None:
        result = await mock_integration.send_notification(
            Notification(channel="pager", title="t", message="m")
        )
        assert result.delivered is False
        assert mock_integration.sent_notifications == []

    def test_channels_configurable(self, mock_integration) -> None:
        mock_integration.set_channels(["teams"])
        assert mock_integration.get_supported_channels() == ["teams"]


# =============================================================================
# Test: Webhooks
# =============================================================================
class TestWebhooks:
    """Signature validation and the mock handler."""

    async def test_valid_signature(self, mock_integration) -> None:
        envelope = signed_envelope(b'{"event": "push"}')
        assert await mock_integration.validate_webhook_signature(envelope) is True

    async def test_wrong_secret(self, mock_integration) -> None:
        envelope = signed_envelope(b'{"event": "push"}', secret="other")
        assert await mock_integration.validate_webhook_signature(envelope) is False

    async def test_no_secret_configured_rejects(self) -> None:
        integration = MockIntegration()
        envelope = signed_envelope(b'{"event": "push"}')
        assert await integration.validate_webhook_signature(envelope) is False

    async def test_handler_builds_evidence(self, mock_integration) -> None:
        body = json.dumps({"event": "scan", "control_id": "CC7.1", "status": "fail"}).encode()
        response = await mock_integration.handle_webhook(signed_envelope(body))
        assert response.status_code == 200
        assert response.body == {"received": True, "event": "scan"}
        assert [e.status for e in response.evidence] == [EvidenceStatus.FAIL]

    async def test_handler_rejects_invalid_json(self, mock_integration) -> None:
        response = await mock_integration.handle_webhook(signed_envelope(b"not json"))
        assert response.status_code == 400


# =============================================================================
# Test: Call Tracking
# =============================================================================
class TestCallTracking:
    """call_history / call_count / clear_history."""

    async def test_history_records_arguments(self, mock_integration) -> None:
        await mock_integration.collect_evidence("CC6.1")
        await mock_integration.list_resources("bucket")
        assert mock_integration.call_history == [
            {"operation": "collect_evidence", "control_id": "CC6.1"},
            {"operation": "list_resources", "category": "bucket"},
        ]
        assert mock_integration.call_count == 2

    async def test_clear_history(self, mock_integration) -> None:
        await mock_integration.collect_evidence("CC6.1")
        mock_integration.clear_history()
        assert mock_integration.call_count == 0
