"""
integration_runtime.integrations.factory - Integration Kind Catalog
=====================================================================

The factory maps an integration kind (the descriptor identifier) to the
class that implements it, and builds configured instances on request. The
platform registers every connector class it ships at process start.

Usage:
    >>> factory = IntegrationFactory(runtime_config)
    >>> factory.register(AcmeCloudIntegration)
    >>> acme = factory.create("acme-cloud", {"apiKey": "...", "region": "eu-west-1"})
    >>> type(acme)  # AcmeCloudIntegration

    The register method also works as a class decorator:

    >>> @factory.register
    ... class SlackIntegration(BaseIntegration, NotificationProvider):
    ...     descriptor = IntegrationDescriptor(identifier="slack", name="Slack")
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, TypeVar, Union

import structlog

from integration_runtime.core.config import IntegrationSettings, RuntimeConfig
from integration_runtime.core.exceptions import RegistryError
from integration_runtime.integrations.base import BaseIntegration

logger = structlog.get_logger()

IntegrationT = TypeVar("IntegrationT", bound=type[BaseIntegration])


class IntegrationFactory:
    """Catalog of constructible integration kinds.

    Attributes:
        runtime_config: Defaults handed to every instance this factory builds.
    """

    def __init__(self, runtime_config: Optional[RuntimeConfig] = None) -> None:
        self.runtime_config = runtime_config or RuntimeConfig()
        self._kinds: dict[str, type[BaseIntegration]] = {}
        self._logger = logger.bind(component="integration_factory")

    def register(self, integration_cls: IntegrationT) -> IntegrationT:
        """Add a connector class under its descriptor identifier.

        Returns the class unchanged so this can be used as a decorator.

        Raises:
            RegistryError: DUPLICATE_INTEGRATION if the kind is taken by a
                different class.
        """
        kind = integration_cls.descriptor.identifier
        existing = self._kinds.get(kind)
        if existing is not None and existing is not integration_cls:
            raise RegistryError(
                message=(
                    f"Integration kind '{kind}' is already provided by "
                    f"{existing.__name__}"
                ),
                integration_id=kind,
                error_code="DUPLICATE_INTEGRATION",
            )
        self._kinds[kind] = integration_cls
        self._logger.debug("integration_kind_registered", kind=kind, cls=integration_cls.__name__)
        return integration_cls

    @property
    def kinds(self) -> list[str]:
        return sorted(self._kinds)

    def is_registered(self, kind: str) -> bool:
        return kind in self._kinds

    def get_class(self, kind: str) -> type[BaseIntegration]:
        """Return the class for ``kind``.

        Raises:
            RegistryError: UNKNOWN_INTEGRATION_KIND.
        """
        integration_cls = self._kinds.get(kind)
        if integration_cls is None:
            raise RegistryError(
                message=(
                    f"Unknown integration kind: '{kind}'. "
                    f"Available kinds: {', '.join(self.kinds) or 'none'}"
                ),
                integration_id=kind,
                error_code="UNKNOWN_INTEGRATION_KIND",
            )
        return integration_cls

    def create(
        self,
        kind: str,
        settings: Union[Mapping[str, Any], IntegrationSettings, None] = None,
        *,
        instance_id: Optional[str] = None,
        **kwargs: Any,
    ) -> BaseIntegration:
        """Validate ``settings`` against the kind's schema and construct it.

        Args:
            kind: Descriptor identifier of a registered class.
            settings: Option mapping for the new instance.
            instance_id: Registry key, when running several of one kind.
            **kwargs: Passed to the constructor (credential, http_client, ...).

        Raises:
            RegistryError: UNKNOWN_INTEGRATION_KIND.
            ConfigValidationError: ``settings`` do not fit the schema.
        """
        integration_cls = self.get_class(kind)
        kwargs.setdefault("runtime_config", self.runtime_config)
        integration = integration_cls(settings, instance_id=instance_id, **kwargs)
        self._logger.info(
            "integration_created",
            kind=kind,
            integration_id=integration.integration_id,
        )
        return integration
