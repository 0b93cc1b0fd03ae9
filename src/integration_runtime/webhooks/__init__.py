"""
integration_runtime.webhooks - Inbound Webhook Authentication

    - verifier:    WebhookSignatureScheme, WebhookVerifier (HMAC over raw bytes)
    - dispatcher:  WebhookDispatcher (verify before handle)
"""

from integration_runtime.webhooks.dispatcher import WebhookDispatcher
from integration_runtime.webhooks.verifier import WebhookSignatureScheme, WebhookVerifier

__all__ = ["WebhookDispatcher", "WebhookSignatureScheme", "WebhookVerifier"]
