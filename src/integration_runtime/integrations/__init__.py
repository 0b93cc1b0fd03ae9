"""
integration_runtime.integrations - The Connector Contract

    - base:          BaseIntegration (identify, validate_connection, metadata)
    - capabilities:  EvidenceCollector, CloudProvider, NotificationProvider,
                     WebhookReceiver mixins
    - registry:      IntegrationRegistry of live instances
    - factory:       IntegrationFactory of constructible kinds
    - mock:          MockIntegration test double
"""

from integration_runtime.integrations.base import BaseIntegration
from integration_runtime.integrations.capabilities import (
    CloudProvider,
    EvidenceCollector,
    NotificationProvider,
    WebhookReceiver,
)
from integration_runtime.integrations.factory import IntegrationFactory
from integration_runtime.integrations.mock import MockIntegration
from integration_runtime.integrations.registry import IntegrationRegistry

__all__ = [
    "BaseIntegration",
    "EvidenceCollector",
    "CloudProvider",
    "NotificationProvider",
    "WebhookReceiver",
    "IntegrationRegistry",
    "IntegrationFactory",
    "MockIntegration",
]
