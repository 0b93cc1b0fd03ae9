"""
Integration Runtime Test Suite
==============================

Test organization mirrors the source code structure:
    tests/
    ├── test_core/          → integration_runtime.core (config, models, exceptions, logging)
    ├── test_transport/     → integration_runtime.transport (auth, governor, retry, client)
    ├── test_integrations/  → integration_runtime.integrations (base, registry, factory, mock)
    ├── test_webhooks/      → integration_runtime.webhooks (verifier, dispatcher)
    ├── test_evidence/      → integration_runtime.evidence (pipeline)
    ├── test_integration/   → End-to-end tests through the facade
    └── conftest.py         → Shared pytest fixtures

Running Tests:
    pytest                              # Run all tests
    pytest tests/test_transport/        # Run only transport tests
    pytest --cov=integration_runtime    # Run with coverage report
"""
