"""
Custom Connector Example — Writing an HTTP-Backed Integration
===============================================================

This example shows how to build your own connector by subclassing
BaseIntegration and mixing in capability sets. A connector declares:

    descriptor        — identity shown in catalogs (required)
    config_schema     — IntegrationSettings subclass for its options
    default_base_url  — API root when no ``endpoint`` option is given
    health_path       — cheapest read-only call for validate_connection()

and implements the abstract methods of each capability it mixes in. All
HTTP goes through ``self.transport``, which already handles auth, rate
limiting and retries.

The vendor API is simulated with ``httpx.MockTransport`` so the example
runs offline; in production you would omit ``http_client``.

Usage:
    python examples/custom_connector.py
"""

from __future__ import annotations

import asyncio

import httpx
from pydantic import SecretStr

from integration_runtime import IntegrationRuntime
from integration_runtime.core.config import IntegrationSettings, RuntimeConfig
from integration_runtime.core.enums import EvidenceStatus, IntegrationCategory
from integration_runtime.core.exceptions import DiscoveryIncomplete
from integration_runtime.core.models import (
    Control,
    Evidence,
    IntegrationDescriptor,
    Resource,
    TestResult,
)
from integration_runtime.evidence.pipeline import EvidencePipeline
from integration_runtime.integrations.base import BaseIntegration
from integration_runtime.integrations.capabilities import CloudProvider, EvidenceCollector


# =============================================================================
# Connector: StorageCloudIntegration
# =============================================================================
class StorageCloudSettings(IntegrationSettings):
    """Options accepted by the connector (camelCase or snake_case)."""

    api_key: SecretStr
    project: str


class StorageCloudIntegration(BaseIntegration, EvidenceCollector, CloudProvider):
    """Checks bucket encryption on a fictional storage provider."""

    descriptor = IntegrationDescriptor(
        identifier="storage-cloud",
        name="Storage Cloud",
        version="1.0.0",
        author="example",
        category=IntegrationCategory.CLOUD_PROVIDER,
        description="Bucket inventory and encryption evidence",
    )
    config_schema = StorageCloudSettings
    default_base_url = "https://api.storage-cloud.example/v1"
    declared_rate_limit = 5
    health_path = "/projects/self"

    pipeline = EvidencePipeline()

    # --- EvidenceCollector ---

    async def collect_evidence(self, control_id: str) -> list[Evidence]:
        buckets = await self.list_resources("bucket")
        return self.pipeline.normalize(
            [bucket.metadata for bucket in buckets],
            control_id,
            lambda bucket: EvidenceStatus.PASS if bucket["encrypted"] else EvidenceStatus.FAIL,
            title=lambda bucket: f"Encryption at rest for {bucket['name']}",
            source=self.integration_id,
        )

    def get_supported_controls(self) -> list[str]:
        return ["CC6.1"]

    # --- CloudProvider ---

    def resource_categories(self) -> list[str]:
        return ["bucket", "key"]

    async def list_resources(self, category: str) -> list[Resource]:
        items = await self.transport.get_json(
            f"/projects/{self.settings.project}/{category}s"
        )
        return [Resource(id=item["name"], kind=category, metadata=item) for item in items]

    async def test_security_control(self, control: Control) -> TestResult:
        return await self.test_control(control)


# =============================================================================
# Simulated vendor API
# =============================================================================
def storage_cloud_api(request: httpx.Request) -> httpx.Response:
    if request.headers.get("Authorization") != "Bearer sc-demo-key":
        return httpx.Response(401)
    routes = {
        "/v1/projects/self": {"project": "demo"},
        "/v1/projects/demo/buckets": [
            {"name": "invoices", "encrypted": True, "tags": {"env": "prod"}},
            {"name": "scratch", "encrypted": False, "sensitivity": "low"},
        ],
    }
    if request.url.path in routes:
        return httpx.Response(200, json=routes[request.url.path])
    return httpx.Response(503, text="key service unavailable")


async def main() -> None:
    """Register the connector, test a control and discover resources."""
    config = RuntimeConfig(retry={"max_retries": 1, "base_delay": 0.1})
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(storage_cloud_api))

    async with IntegrationRuntime(config) as runtime:
        runtime.register_kind(StorageCloudIntegration)
        integration = await runtime.add_integration(
            "storage-cloud",
            {"apiKey": "sc-demo-key", "project": "demo"},
            validate=True,
            http_client=http_client,
        )

        print("Connector")
        print("-" * 40)
        for key, value in integration.get_metadata().items():
            print(f"{key:<13}: {value}")
        print()

        result = await runtime.test_control("storage-cloud", Control(id="CC6.1"))
        print(f"CC6.1 -> {result.status.value}")
        for evidence in result.evidence:
            print(f"  - {evidence.title}: {evidence.status.value}")
        print()

        try:
            await integration.discover_resources()
        except DiscoveryIncomplete as exc:
            print(f"Discovery incomplete: {sorted(exc.failures)} failed")
            for resource in exc.partial_results:
                classification = await integration.classify_resource(resource)
                print(f"  - {resource.id}: {classification.sensitivity} {classification.tags}")

    await http_client.aclose()


if __name__ == "__main__":
    asyncio.run(main())
