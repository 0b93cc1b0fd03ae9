"""
Basic Runtime Example — Evidence, Notifications and Webhooks with the Mock
============================================================================

This example demonstrates the simplest way to use the integration runtime:
register the in-memory MockIntegration, feed it some control data, and run
the platform operations through the IntegrationRuntime facade.

This is useful for:
    - Seeing the facade lifecycle end to end
    - Exploring how evidence folds into a control verdict
    - Trying webhook signature verification locally

Usage:
    python examples/basic_runtime.py
"""

from __future__ import annotations

import asyncio

from integration_runtime import IntegrationRuntime
from integration_runtime.core.config import RuntimeConfig
from integration_runtime.core.models import Control, Notification, WebhookEnvelope
from integration_runtime.integrations.mock import MockIntegration
from integration_runtime.webhooks.verifier import WebhookVerifier

WEBHOOK_SECRET = "whsec-example"


async def main() -> None:
    """Test one control, notify about it, and accept one signed webhook."""
    config = RuntimeConfig(configure_logging=True, log_level="WARNING")

    async with IntegrationRuntime(config) as runtime:
        runtime.register_kind(MockIntegration)
        mock = await runtime.add_integration("mock", {"webhookSecret": WEBHOOK_SECRET})

        # Three users checked for MFA; one of them fails.
        mock.set_control_data(
            "CC6.1",
            [
                {"status": "pass", "user": "ada"},
                {"status": "fail", "user": "bob"},
                {"status": "pass", "user": "cy"},
            ],
        )

        result = await runtime.test_control("mock", Control(id="CC6.1"))

        print("Control Test")
        print("-" * 40)
        print(f"Control  : {result.control_id}")
        print(f"Status   : {result.status.value}")
        for evidence in result.evidence:
            print(f"  - {evidence.data['user']:<4} {evidence.status.value}")
        print()

        delivery = await runtime.send_notification(
            "mock",
            Notification(
                channel="slack",
                title=f"{result.control_id} is {result.status.value}",
                message="One or more users do not have MFA enabled.",
                severity="high",
            ),
        )
        print(f"Notification delivered: {delivery.delivered} ({delivery.provider_message_id})")

        body = b'{"event": "scan.completed", "control_id": "CC7.1", "status": "pass"}'
        signature = WebhookVerifier().sign(body, WEBHOOK_SECRET)
        accepted = await runtime.handle_webhook(
            "mock", WebhookEnvelope.from_request(body, {"X-Signature": signature})
        )
        forged = await runtime.handle_webhook(
            "mock", WebhookEnvelope.from_request(body, {"X-Signature": "00" * 32})
        )
        print(f"Signed webhook  : HTTP {accepted.status_code}, evidence={len(accepted.evidence)}")
        print(f"Forged webhook  : HTTP {forged.status_code}")


if __name__ == "__main__":
    asyncio.run(main())
