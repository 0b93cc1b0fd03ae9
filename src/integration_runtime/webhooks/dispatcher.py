"""
integration_runtime.webhooks.dispatcher - Verify, Then Handle
===============================================================

The dispatcher is the only path from an inbound HTTP request to a
connector's ``handle_webhook``. Signature verification runs first; a payload
that fails it never reaches handler code.

    inbound request
         │
         ▼
    WebhookEnvelope(raw bytes, headers)
         │
         ▼
    integration.validate_webhook_signature(envelope) ──False──▶ WebhookVerificationFailed
         │ True
         ▼
    integration.handle_webhook(envelope) ──▶ WebhookResponse
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from integration_runtime.core.enums import Capability
from integration_runtime.core.exceptions import RegistryError, WebhookVerificationFailed
from integration_runtime.core.models import WebhookEnvelope, WebhookResponse

if TYPE_CHECKING:
    from integration_runtime.integrations.base import BaseIntegration

logger = structlog.get_logger()


class WebhookDispatcher:
    """Gate inbound webhooks on their signature before dispatching them."""

    def __init__(self) -> None:
        self._logger = logger.bind(component="webhook_dispatcher")

    async def dispatch(
        self, integration: BaseIntegration, envelope: WebhookEnvelope
    ) -> WebhookResponse:
        """Verify ``envelope`` and hand it to the integration's handler.

        Raises:
            RegistryError: CAPABILITY_NOT_SUPPORTED if the integration does not
                receive webhooks.
            WebhookVerificationFailed: the signature did not verify. The
                handler was not called.
        """
        integration_id = integration.integration_id
        if Capability.WEBHOOK not in integration.capabilities:
            raise RegistryError(
                message=f"Integration '{integration_id}' does not receive webhooks",
                integration_id=integration_id,
                error_code="CAPABILITY_NOT_SUPPORTED",
                details={"capability": Capability.WEBHOOK.value},
            )

        if not await integration.validate_webhook_signature(envelope):  # type: ignore[attr-defined]
            self._logger.warning(
                "webhook_rejected",
                integration_id=integration_id,
                body_bytes=len(envelope.body),
            )
            raise WebhookVerificationFailed(
                message=f"Webhook signature verification failed for '{integration_id}'",
                integration_id=integration_id,
            )

        response: WebhookResponse = await integration.handle_webhook(envelope)  # type: ignore[attr-defined]
        self._logger.info(
            "webhook_handled",
            integration_id=integration_id,
            status_code=response.status_code,
            evidence_count=len(response.evidence),
        )
        return response
