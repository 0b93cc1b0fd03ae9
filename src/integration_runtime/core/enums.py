"""
integration_runtime.core.enums - Type-Safe Enumerations
=========================================================

All enums inherit from both ``str`` and ``Enum`` so they serialize as plain
strings in JSON/YAML and compare equal to their values:

    >>> IntegrationCategory.CLOUD_PROVIDER == "cloud-provider"
    True

Where each enum is used:

    IntegrationCategory  → IntegrationDescriptor.category, Registry filters
    Capability           → capability mixins, Registry dispatch
    AuthKind             → Credential.kind, build_auth_strategy()
    EvidenceType         → Evidence.type
    EvidenceStatus       → per-item verdict from a classifier
    TestStatus           → aggregate verdict on a TestResult
"""

from enum import Enum


# =============================================================================
# Integration Category
# =============================================================================
# Declared by each connector on its descriptor. Used by the marketplace-style
# listing ``registry.list_by_category()``. A connector that implements several
# capabilities still declares a single primary category.
# =============================================================================
class IntegrationCategory(str, Enum):
    """Primary category a connector declares on its descriptor."""

    CLOUD_PROVIDER = "cloud-provider"
    EVIDENCE_COLLECTOR = "evidence-collector"
    NOTIFICATION = "notification"
    WEBHOOK = "webhook"
    OTHER = "other"


# =============================================================================
# Capability
# =============================================================================
# The specialized capability sets a connector can opt into. Unlike category,
# a connector may carry any combination of these. They are derived from the
# mixins a connector class inherits (see integrations/capabilities.py).
# =============================================================================
class Capability(str, Enum):
    """Specialized capability sets an integration can implement."""

    EVIDENCE_COLLECTOR = "evidence-collector"
    CLOUD_PROVIDER = "cloud-provider"
    NOTIFICATION = "notification"
    WEBHOOK = "webhook"


class AuthKind(str, Enum):
    """Kind tag carried by a Credential."""

    API_KEY = "api-key"
    OAUTH2 = "oauth2"
    JWT = "jwt"


class EvidenceType(str, Enum):
    """How a piece of evidence was obtained."""

    AUTOMATED = "automated"
    MANUAL = "manual"


# =============================================================================
# Evidence Status vs. Test Status
# =============================================================================
# EvidenceStatus is the verdict on ONE collected item; TestStatus is the
# verdict on a control after folding all of its evidence together:
#
#   any FAIL                    → TestStatus.FAIL
#   else any ERROR              → TestStatus.ERROR
#   else any PASS               → TestStatus.PASS
#   else (all N/A, or nothing)  → TestStatus.NOT_APPLICABLE
# =============================================================================
class EvidenceStatus(str, Enum):
    """Verdict assigned to a single Evidence record by a classifier."""

    PASS = "pass"
    FAIL = "fail"
    NOT_APPLICABLE = "not-applicable"
    ERROR = "error"


class TestStatus(str, Enum):
    """Aggregate verdict on a TestResult."""

    __test__ = False  # not a pytest test class

    PASS = "PASS"
    FAIL = "FAIL"
    NOT_APPLICABLE = "NOT_APPLICABLE"
    ERROR = "ERROR"
