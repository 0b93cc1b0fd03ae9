"""
Tests for integration_runtime.evidence.pipeline
=================================================

These tests verify evidence normalization and aggregation:
    - One Evidence per raw item, in input order
    - Classifier failures and bad return values become error evidence
    - The aggregation fold (fail > error > pass > not-applicable)
    - Evidence payloads are detached, read-only copies of the raw items
    - Injectable clock and id factory give deterministic output
"""

from datetime import datetime, timezone
from itertools import count

import pytest

from integration_runtime.core.enums import EvidenceStatus, EvidenceType, TestStatus
from integration_runtime.core.models import Evidence
from integration_runtime.evidence.pipeline import EvidencePipeline, aggregate, aggregate_status

FIXED = datetime(2026, 4, 1, 9, 30, tzinfo=timezone.utc)


def deterministic_pipeline() -> EvidencePipeline:
    ids = count(1)
    return EvidencePipeline(clock=lambda: FIXED, id_factory=lambda: f"ev-{next(ids)}")


def by_flag(item: dict) -> EvidenceStatus:
    return EvidenceStatus.PASS if item["mfa"] else EvidenceStatus.FAIL


USERS = [
    {"user": "ada", "mfa": True},
    {"user": "bob", "mfa": False},
    {"user": "cy", "mfa": True},
]


# =============================================================================
# Test: Normalization
# =============================================================================
class TestNormalize:
    """Tests for EvidencePipeline.normalize()."""

    def test_one_record_per_item_in_order(self) -> None:
        evidence = deterministic_pipeline().normalize(USERS, "CC6.1", by_flag, source="okta")

        assert [e.data["user"] for e in evidence] == ["ada", "bob", "cy"]
        assert [e.status for e in evidence] == [
            EvidenceStatus.PASS,
            EvidenceStatus.FAIL,
            EvidenceStatus.PASS,
        ]
        assert all(e.control_id == "CC6.1" for e in evidence)
        assert all(e.source == "okta" for e in evidence)

    def test_deterministic_ids_and_timestamps(self) -> None:
        evidence = deterministic_pipeline().normalize(USERS, "CC6.1", by_flag)
        assert [e.evidence_id for e in evidence] == ["ev-1", "ev-2", "ev-3"]
        assert all(e.timestamp == FIXED for e in evidence)

    def test_default_titles(self) -> None:
        evidence = deterministic_pipeline().normalize(USERS[:2], "CC6.1", by_flag)
        assert [e.title for e in evidence] == ["CC6.1 evidence #1", "CC6.1 evidence #2"]

    def test_title_factory(self) -> None:
        evidence = deterministic_pipeline().normalize(
            USERS[:1], "CC6.1", by_flag, title=lambda u: f"MFA for {u['user']}"
        )
        assert evidence[0].title == "MFA for ada"

    def test_failing_title_factory_falls_back(self) -> None:
        evidence = deterministic_pipeline().normalize(
            [{"mfa": True}], "CC6.1", by_flag, title=lambda u: u["missing"]
        )
        assert evidence[0].title == "CC6.1 evidence #1"

    def test_manual_type_and_description(self) -> None:
        evidence = deterministic_pipeline().normalize(
            USERS[:1],
            "CC1.1",
            by_flag,
            description="Quarterly access review",
            evidence_type=EvidenceType.MANUAL,
        )
        assert evidence[0].type == EvidenceType.MANUAL
        assert evidence[0].description == "Quarterly access review"

    def test_classifier_exception_becomes_error(self) -> None:
        items = [{"mfa": True}, {"no_flag": 1}, {"mfa": False}]
        evidence = deterministic_pipeline().normalize(items, "CC6.1", by_flag)

        assert [e.status for e in evidence] == [
            EvidenceStatus.PASS,
            EvidenceStatus.ERROR,
            EvidenceStatus.FAIL,
        ]
        assert evidence[1].description.startswith("Classifier failed: KeyError")

    def test_string_status_accepted(self) -> None:
        evidence = deterministic_pipeline().normalize([1], "CC6.1", lambda item: "pass")
        assert evidence[0].status == EvidenceStatus.PASS

    @pytest.mark.parametrize("returned", ["maybe", None, 42])
    def test_invalid_status_becomes_error(self, returned) -> None:
        evidence = deterministic_pipeline().normalize([1], "CC6.1", lambda item: returned)
        assert evidence[0].status == EvidenceStatus.ERROR
        assert "invalid status" in evidence[0].description

    def test_payload_detached_from_raw_item(self) -> None:
        raw = {"user": "ada", "mfa": True, "groups": ["admins"]}
        evidence = deterministic_pipeline().normalize([raw], "CC6.1", by_flag)
        result = aggregate("CC6.1", evidence, tested_at=FIXED)

        raw["mfa"] = False
        raw["groups"].append("everyone")

        assert result.evidence[0].data["mfa"] is True
        assert result.evidence[0].data["groups"] == ("admins",)

    def test_payload_is_read_only(self) -> None:
        evidence = deterministic_pipeline().normalize(
            [{"user": "ada", "mfa": True}], "CC6.1", by_flag
        )
        with pytest.raises(TypeError):
            evidence[0].data["mfa"] = False
        assert evidence[0].data["mfa"] is True

    def test_payload_serializes_as_plain_json(self) -> None:
        evidence = deterministic_pipeline().normalize(
            [{"user": "ada", "mfa": True, "groups": ["admins"]}], "CC6.1", by_flag
        )
        dumped = evidence[0].model_dump(mode="json")
        assert dumped["data"] == {"user": "ada", "mfa": True, "groups": ["admins"]}

    def test_empty_input(self) -> None:
        assert deterministic_pipeline().normalize([], "CC6.1", by_flag) == []

    def test_generator_input(self) -> None:
        evidence = deterministic_pipeline().normalize((u for u in USERS), "CC6.1", by_flag)
        assert len(evidence) == 3


# =============================================================================
# Test: Aggregation
# =============================================================================
class TestAggregate:
    """Tests for aggregate_status() and aggregate()."""

    @pytest.mark.parametrize(
        "statuses, expected",
        [
            ([], TestStatus.NOT_APPLICABLE),
            ([EvidenceStatus.NOT_APPLICABLE], TestStatus.NOT_APPLICABLE),
            ([EvidenceStatus.PASS, EvidenceStatus.NOT_APPLICABLE], TestStatus.PASS),
            ([EvidenceStatus.PASS, EvidenceStatus.ERROR], TestStatus.ERROR),
            ([EvidenceStatus.ERROR, EvidenceStatus.FAIL, EvidenceStatus.PASS], TestStatus.FAIL),
            ([EvidenceStatus.FAIL], TestStatus.FAIL),
        ],
    )
    def test_fold(self, statuses, expected) -> None:
        assert aggregate_status(statuses) == expected

    def test_fold_is_order_independent(self) -> None:
        forward = [EvidenceStatus.PASS, EvidenceStatus.ERROR, EvidenceStatus.FAIL]
        assert aggregate_status(forward) == aggregate_status(reversed(forward))

    def test_aggregate_keeps_evidence_order(self) -> None:
        evidence = deterministic_pipeline().normalize(USERS, "CC6.1", by_flag)
        result = aggregate("CC6.1", evidence, tested_at=FIXED)

        assert result.status == TestStatus.FAIL
        assert result.evidence == tuple(evidence)
        assert result.tested_at == FIXED

    def test_pipeline_aggregate_uses_clock(self) -> None:
        pipeline = deterministic_pipeline()
        evidence = [Evidence(control_id="CC6.1", title="ok", status=EvidenceStatus.PASS)]
        result = pipeline.aggregate("CC6.1", evidence)
        assert result.tested_at == FIXED
        assert result.status == TestStatus.PASS
