"""
Integration Runtime - Connector Core for Compliance Automation
================================================================

The integration runtime is the layer every third-party connector of the
compliance platform is built on: cloud providers, evidence collectors,
notification channels and webhook receivers.

    Platform  →  IntegrationRuntime  →  Integration (capability mixins)
                                            │
                                            ▼
                                     TransportClient
                            (auth → rate governor → retry → httpx)

Architecture Layers (top to bottom):
    1. Facade          - IntegrationRuntime, registry, factory
    2. Integrations    - BaseIntegration + capability mixins, MockIntegration
    3. Evidence/Hooks  - EvidencePipeline, WebhookVerifier/Dispatcher
    4. Transport       - Auth strategies, RateGovernor, RetryPolicy, client
    5. Core            - Config, models, enums, exceptions, logging

Quick Start:
    >>> from integration_runtime import IntegrationRuntime
    >>> async with IntegrationRuntime() as runtime:
    ...     runtime.register_kind(MyConnector)
    ...     await runtime.add_integration("my-connector", {"apiKey": "..."})
"""

# =============================================================================
# Package Version
# =============================================================================
__version__ = "0.1.0"

# =============================================================================
# Package-Level Exports
# =============================================================================
# The IntegrationRuntime facade is the main entry point. For specific
# components, import from submodules directly:
#   from integration_runtime.core.config import RuntimeConfig
#   from integration_runtime.integrations import BaseIntegration, EvidenceCollector
#   from integration_runtime.transport import TransportClient
# =============================================================================
from integration_runtime.facade import IntegrationRuntime

__all__ = ["IntegrationRuntime", "__version__"]
