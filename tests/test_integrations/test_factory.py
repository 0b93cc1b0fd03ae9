"""
Tests for integration_runtime.integrations.factory
====================================================

These tests verify the IntegrationFactory:
    - Registering connector classes (directly and as a decorator)
    - Creating validated instances by kind
    - Error handling for unknown kinds and conflicting classes
"""

import pytest

from integration_runtime.core.config import RetryConfig, RuntimeConfig
from integration_runtime.core.exceptions import ConfigValidationError, RegistryError
from integration_runtime.core.models import IntegrationDescriptor
from integration_runtime.integrations.base import BaseIntegration
from integration_runtime.integrations.factory import IntegrationFactory
from integration_runtime.integrations.mock import MockIntegration


class OtherMock(BaseIntegration):
    """Different class claiming the ``mock`` kind."""

    descriptor = IntegrationDescriptor(identifier="mock", name="Impostor")
    default_base_url = "https://impostor.example"


class TestIntegrationFactory:
    """Tests for IntegrationFactory."""

    def test_register_and_create(self) -> None:
        factory = IntegrationFactory()
        factory.register(MockIntegration)
        integration = factory.create("mock", {"webhookSecret": "s"})
        assert isinstance(integration, MockIntegration)
        assert integration.settings.webhook_secret.get_secret_value() == "s"

    def test_register_as_decorator(self) -> None:
        factory = IntegrationFactory()

        @factory.register
        class Decorated(BaseIntegration):
            descriptor = IntegrationDescriptor(identifier="decorated", name="Decorated")
            default_base_url = "https://decorated.example"

        assert factory.is_registered("decorated")
        assert factory.get_class("decorated") is Decorated

    def test_re_registering_same_class_is_noop(self) -> None:
        factory = IntegrationFactory()
        factory.register(MockIntegration)
        factory.register(MockIntegration)
        assert factory.kinds == ["mock"]

    def test_conflicting_class_rejected(self) -> None:
        factory = IntegrationFactory()
        factory.register(MockIntegration)
        with pytest.raises(RegistryError) as exc_info:
            factory.register(OtherMock)
        assert exc_info.value.error_code == "DUPLICATE_INTEGRATION"

    def test_unknown_kind(self) -> None:
        factory = IntegrationFactory()
        factory.register(MockIntegration)
        with pytest.raises(RegistryError) as exc_info:
            factory.create("salesforce")
        assert exc_info.value.error_code == "UNKNOWN_INTEGRATION_KIND"
        assert "mock" in exc_info.value.message

    def test_invalid_options_fail_at_create(self) -> None:
        factory = IntegrationFactory()
        factory.register(MockIntegration)
        with pytest.raises(ConfigValidationError):
            factory.create("mock", {"notAnOption": True})

    def test_instance_id_and_runtime_config_passed(self) -> None:
        config = RuntimeConfig(retry=RetryConfig(max_retries=1))
        factory = IntegrationFactory(config)
        factory.register(MockIntegration)
        integration = factory.create("mock", instance_id="mock-eu")
        assert integration.integration_id == "mock-eu"
        assert integration.runtime_config is config
        assert integration.transport.retry_policy.max_retries == 1

    def test_constructor_kwargs_forwarded(self) -> None:
        factory = IntegrationFactory()
        factory.register(MockIntegration)
        runtime_config = RuntimeConfig()
        integration = factory.create("mock", runtime_config=runtime_config)
        assert integration.runtime_config is runtime_config
