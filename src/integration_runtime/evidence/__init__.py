"""
integration_runtime.evidence - Evidence Normalization and Aggregation

    - pipeline: EvidencePipeline, aggregate, aggregate_status
"""

from integration_runtime.evidence.pipeline import (
    Classifier,
    EvidencePipeline,
    aggregate,
    aggregate_status,
)

__all__ = ["Classifier", "EvidencePipeline", "aggregate", "aggregate_status"]
