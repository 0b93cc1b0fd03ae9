"""
integration_runtime.integrations.registry - Integration Instance Catalog
==========================================================================

The registry is the platform's lookup table of live integration instances.
It is an ordinary object the platform creates and passes around; there is
no module-level singleton.

    ┌─────────────────────┐   register()   ┌───────────────────────────┐
    │ IntegrationFactory  │ ─────────────→ │  IntegrationRegistry      │
    └─────────────────────┘                │  ┌─ id → instance ──────┐ │
                                           │  │ aws-prod:  {CLOUD}   │ │
    ┌─────────────────────┐  require(id,   │  │ slack:     {NOTIF}   │ │
    │ platform / facade   │ ── capability) │  │ github:    {WEBHOOK} │ │
    └─────────────────────┘ ─────────────→ │  └──────────────────────┘ │
                                           └───────────────────────────┘

Lifecycle:
    register() adds an already-constructed instance. unregister() and
    drain() close instances (releasing their HTTP clients) as they remove
    them.

Error Codes (RegistryError):
    DUPLICATE_INTEGRATION      id already registered
    INTEGRATION_NOT_FOUND      unknown id
    CAPABILITY_NOT_SUPPORTED   instance lacks the requested capability
"""

from __future__ import annotations

from typing import Iterator, Optional

import structlog

from integration_runtime.core.enums import Capability, IntegrationCategory
from integration_runtime.core.exceptions import RegistryError
from integration_runtime.integrations.base import BaseIntegration

logger = structlog.get_logger()


class IntegrationRegistry:
    """Process-scoped registry of integration instances, keyed by id.

    Example:
        >>> registry = IntegrationRegistry()
        >>> registry.register(aws)
        >>> registry.get("aws-prod").identify().name
        'Amazon Web Services'
        >>> [i.integration_id for i in registry.list_by_capability(Capability.CLOUD_PROVIDER)]
        ['aws-prod']
        >>> await registry.drain()
    """

    def __init__(self) -> None:
        self._integrations: dict[str, BaseIntegration] = {}
        self._logger = logger.bind(component="integration_registry")

    # =========================================================================
    # Registration
    # =========================================================================

    def register(self, integration: BaseIntegration) -> None:
        """Add an instance under its ``integration_id``.

        Raises:
            RegistryError: DUPLICATE_INTEGRATION if the id is taken.
        """
        integration_id = integration.integration_id
        if integration_id in self._integrations:
            raise RegistryError(
                message=f"Integration '{integration_id}' is already registered",
                integration_id=integration_id,
                error_code="DUPLICATE_INTEGRATION",
            )
        self._integrations[integration_id] = integration
        self._logger.info(
            "integration_registered",
            integration_id=integration_id,
            category=integration.descriptor.category.value,
            capabilities=sorted(c.value for c in integration.capabilities),
            total_integrations=len(self._integrations),
        )

    async def unregister(self, integration_id: str) -> None:
        """Remove and close one instance.

        Raises:
            RegistryError: INTEGRATION_NOT_FOUND.
        """
        integration = self.get(integration_id)
        del self._integrations[integration_id]
        await integration.aclose()
        self._logger.info(
            "integration_unregistered",
            integration_id=integration_id,
            total_integrations=len(self._integrations),
        )

    async def drain(self) -> None:
        """Close and remove every instance. A failing close is logged, not fatal."""
        self._logger.info("registry_draining", integration_count=len(self._integrations))
        for integration_id, integration in list(self._integrations.items()):
            try:
                await integration.aclose()
            except Exception as e:
                self._logger.error(
                    "integration_close_failed",
                    integration_id=integration_id,
                    error=str(e),
                )
        self._integrations.clear()
        self._logger.info("registry_drained")

    # =========================================================================
    # Lookup
    # =========================================================================

    def get(self, integration_id: str) -> BaseIntegration:
        """Look up an instance by id.

        Raises:
            RegistryError: INTEGRATION_NOT_FOUND.
        """
        integration = self._integrations.get(integration_id)
        if integration is None:
            raise RegistryError(
                message=f"Integration '{integration_id}' is not registered",
                integration_id=integration_id,
                error_code="INTEGRATION_NOT_FOUND",
            )
        return integration

    def find(self, integration_id: str) -> Optional[BaseIntegration]:
        """Like get(), but returns None for an unknown id."""
        return self._integrations.get(integration_id)

    def require(self, integration_id: str, capability: Capability) -> BaseIntegration:
        """Look up an instance that must support ``capability``.

        Raises:
            RegistryError: INTEGRATION_NOT_FOUND or CAPABILITY_NOT_SUPPORTED.
        """
        integration = self.get(integration_id)
        if capability not in integration.capabilities:
            raise RegistryError(
                message=(
                    f"Integration '{integration_id}' does not support "
                    f"capability '{capability.value}'"
                ),
                integration_id=integration_id,
                error_code="CAPABILITY_NOT_SUPPORTED",
                details={"capability": capability.value},
            )
        return integration

    def list_by_category(self, category: IntegrationCategory) -> list[BaseIntegration]:
        return [
            integration
            for integration in self._integrations.values()
            if integration.descriptor.category == category
        ]

    def list_by_capability(self, capability: Capability) -> list[BaseIntegration]:
        return [
            integration
            for integration in self._integrations.values()
            if capability in integration.capabilities
        ]

    def list_integrations(self) -> list[BaseIntegration]:
        """All registered instances, in registration order."""
        return list(self._integrations.values())

    @property
    def ids(self) -> list[str]:
        return list(self._integrations)

    def __contains__(self, integration_id: object) -> bool:
        return integration_id in self._integrations

    def __len__(self) -> int:
        return len(self._integrations)

    def __iter__(self) -> Iterator[BaseIntegration]:
        return iter(list(self._integrations.values()))

    def __repr__(self) -> str:
        return f"IntegrationRegistry(integrations={self.ids!r})"
