"""
integration_runtime.evidence.pipeline - Raw Data → Evidence → TestResult
==========================================================================

Connectors hand raw vendor payloads (one item per checked setting, user,
bucket, ...) to the pipeline together with a classifier. The pipeline turns
each item into an Evidence record and folds a control's evidence into a
single TestResult.

    raw items ──normalize(classifier)──▶ [Evidence, ...] ──aggregate──▶ TestResult

Classifier Totality:
    A classifier is a pure ``(item) -> EvidenceStatus``. If it raises, or
    returns something that is not a status, that item becomes ``error``
    evidence. A bad item never aborts the batch.

Aggregation Fold (order of precedence):
    any fail                     → FAIL
    else any error               → ERROR
    else any pass                → PASS
    else (all n/a, or no items)  → NOT_APPLICABLE

The pipeline does no I/O and holds no state. Ids and timestamps come from
injectable ``id_factory`` / ``clock`` so tests can compare exact output.
"""

from __future__ import annotations

from datetime import datetime, timezone
from functools import reduce
from typing import Any, Callable, Iterable, Optional, Union
from uuid import uuid4

import structlog

from integration_runtime.core.enums import EvidenceStatus, EvidenceType, TestStatus
from integration_runtime.core.models import Evidence, TestResult

logger = structlog.get_logger()

Classifier = Callable[[Any], EvidenceStatus]
TitleFactory = Callable[[Any], str]

# Higher rank wins the fold.
_PRECEDENCE = {
    EvidenceStatus.NOT_APPLICABLE: 0,
    EvidenceStatus.PASS: 1,
    EvidenceStatus.ERROR: 2,
    EvidenceStatus.FAIL: 3,
}

_TEST_STATUS = {
    EvidenceStatus.NOT_APPLICABLE: TestStatus.NOT_APPLICABLE,
    EvidenceStatus.PASS: TestStatus.PASS,
    EvidenceStatus.ERROR: TestStatus.ERROR,
    EvidenceStatus.FAIL: TestStatus.FAIL,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _combine(current: EvidenceStatus, status: EvidenceStatus) -> EvidenceStatus:
    return status if _PRECEDENCE[status] > _PRECEDENCE[current] else current


def aggregate_status(statuses: Iterable[EvidenceStatus]) -> TestStatus:
    """Fold evidence statuses into a control verdict.

    Example:
        >>> aggregate_status([EvidenceStatus.PASS, EvidenceStatus.FAIL])
        <TestStatus.FAIL: 'FAIL'>
        >>> aggregate_status([])
        <TestStatus.NOT_APPLICABLE: 'NOT_APPLICABLE'>
    """
    return _TEST_STATUS[reduce(_combine, statuses, EvidenceStatus.NOT_APPLICABLE)]


def aggregate(
    control_id: str,
    evidence: Iterable[Evidence],
    *,
    tested_at: Optional[datetime] = None,
) -> TestResult:
    """Build the TestResult for ``control_id`` from its evidence, in order."""
    items = tuple(evidence)
    return TestResult(
        control_id=control_id,
        status=aggregate_status(item.status for item in items),
        evidence=items,
        tested_at=tested_at or _utcnow(),
    )


class EvidencePipeline:
    """Stateless normalizer/aggregator with injectable ids and clock.

    Example:
        >>> pipeline = EvidencePipeline()
        >>> evidence = pipeline.normalize(
        ...     buckets,
        ...     control_id="CC6.1",
        ...     classifier=lambda b: EvidenceStatus.PASS if b["encrypted"] else EvidenceStatus.FAIL,
        ...     title=lambda b: f"Bucket {b['name']} encryption",
        ...     source="acme-cloud",
        ... )
        >>> result = pipeline.aggregate("CC6.1", evidence)
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = lambda: str(uuid4()),
    ) -> None:
        self._clock = clock
        self._id_factory = id_factory
        self._logger = logger.bind(component="evidence_pipeline")

    def normalize(
        self,
        raw_items: Iterable[Any],
        control_id: str,
        classifier: Classifier,
        *,
        title: Union[str, TitleFactory, None] = None,
        description: str = "",
        evidence_type: EvidenceType = EvidenceType.AUTOMATED,
        source: Optional[str] = None,
    ) -> list[Evidence]:
        """Turn raw items into Evidence, one record per item, in input order.

        Args:
            raw_items: Vendor payload items; a read-only copy of each
                becomes ``Evidence.data``.
            control_id: Control the evidence supports.
            classifier: Maps one item to an EvidenceStatus.
            title: Fixed title, or a callable building one per item.
            description: Description for every record.
            evidence_type: automated (default) or manual.
            source: Integration id that produced the data.

        Returns:
            Evidence list; never raises for a bad item.
        """
        evidence: list[Evidence] = []
        for index, item in enumerate(raw_items):
            status, item_description = self._classify(item, classifier, control_id, index)
            evidence.append(
                Evidence(
                    evidence_id=self._id_factory(),
                    control_id=control_id,
                    type=evidence_type,
                    title=self._title(title, item, control_id, index),
                    description=item_description or description,
                    timestamp=self._clock(),
                    data=item,
                    status=status,
                    source=source,
                )
            )
        self._logger.debug(
            "evidence_normalized",
            control_id=control_id,
            count=len(evidence),
            source=source,
        )
        return evidence

    def aggregate(self, control_id: str, evidence: Iterable[Evidence]) -> TestResult:
        """Fold evidence into a TestResult stamped with this pipeline's clock."""
        return aggregate(control_id, evidence, tested_at=self._clock())

    def _classify(
        self, item: Any, classifier: Classifier, control_id: str, index: int
    ) -> tuple[EvidenceStatus, Optional[str]]:
        try:
            status = classifier(item)
        except Exception as exc:
            self._logger.warning(
                "evidence_classification_failed",
                control_id=control_id,
                index=index,
                error_type=type(exc).__name__,
            )
            return EvidenceStatus.ERROR, f"Classifier failed: {type(exc).__name__}: {exc}"

        if isinstance(status, EvidenceStatus):
            return status, None
        try:
            return EvidenceStatus(status), None
        except (TypeError, ValueError):
            self._logger.warning(
                "evidence_classification_invalid",
                control_id=control_id,
                index=index,
                returned=repr(status),
            )
            return EvidenceStatus.ERROR, f"Classifier returned an invalid status: {status!r}"

    def _title(
        self, title: Union[str, TitleFactory, None], item: Any, control_id: str, index: int
    ) -> str:
        fallback = f"{control_id} evidence #{index + 1}"
        if title is None:
            return fallback
        if isinstance(title, str):
            return title
        try:
            return str(title(item))
        except Exception as exc:
            self._logger.warning(
                "evidence_title_failed",
                control_id=control_id,
                index=index,
                error_type=type(exc).__name__,
            )
            return fallback
