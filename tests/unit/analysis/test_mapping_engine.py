"""Tests for MappingEngine rules, LLMClassifier and document type detection."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from intake.analysis.candidates import Candidate
from intake.analysis.mapping import (
    DEGRADED_REASONING,
    ClassificationRequest,
    DocumentType,
    LLMClassifier,
    MappingAction,
    MappingEngine,
    RiskLevel,
    degraded_result,
    detect_document_type,
)
from intake.db.models import ItemType

CANDIDATES = [
    Candidate(id="task-1", title="Payment integration", description="Stripe", similarity=0.8),
    Candidate(id="task-2", title="Onboarding", description="Signup", similarity=0.6),
]


class StubClassifier:
    def __init__(self, answer=None, error=None, doc_type="general"):
        self.answer = answer
        self.error = error
        self.doc_type = doc_type
        self.requests: list[ClassificationRequest] = []

    def classify(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return self.answer

    def detect_type(self, excerpt):
        if self.error:
            raise self.error
        return self.doc_type


def _answer(**overrides):
    answer = {
        "action": "create_new",
        "targetRecordId": None,
        "extractedTitle": "Add retry logic",
        "extractedDescription": "Retry failed webhooks",
        "category": "action",
        "confidence": 0.9,
        "reasoning": "new work",
        "riskLevel": "low",
    }
    answer.update(overrides)
    return answer


def _classify(answer, candidates=CANDIDATES, floor=0.5):
    return MappingEngine(StubClassifier(answer), confidence_floor=floor).classify(
        "Retry failed webhooks up to three times.", candidates
    )


# ------------------------------------------------------------------
# Rules
# ------------------------------------------------------------------


def test_verified_map_existing_is_kept():
    result = _classify(_answer(action="map_existing", targetRecordId="task-1", riskLevel="high"))
    assert result.action == MappingAction.MAP_EXISTING
    assert result.target_record_id == "task-1"
    assert result.risk_level == RiskLevel.HIGH
    assert not result.degraded


def test_unverified_target_becomes_create_new():
    result = _classify(_answer(action="map_existing", targetRecordId="ghost-1", confidence=0.9))
    assert result.action == MappingAction.CREATE_NEW
    assert result.target_record_id is None
    assert result.confidence == 0.9


def test_targeted_action_without_target_becomes_create_new():
    result = _classify(_answer(action="append_spec", targetRecordId=None))
    assert result.action == MappingAction.CREATE_NEW
    assert result.target_record_id is None


def test_non_targeted_action_drops_target():
    result = _classify(_answer(action="ignore", targetRecordId="task-1"))
    assert result.action == MappingAction.IGNORE
    assert result.target_record_id is None


def test_low_confidence_forces_create_new():
    result = _classify(
        _answer(action="map_existing", targetRecordId="task-1", confidence=0.3), floor=0.5
    )
    assert result.action == MappingAction.CREATE_NEW
    assert result.target_record_id is None
    assert result.confidence == 0.3


def test_confidence_equal_to_floor_is_kept():
    result = _classify(
        _answer(action="map_existing", targetRecordId="task-1", confidence=0.5), floor=0.5
    )
    assert result.action == MappingAction.MAP_EXISTING


@pytest.mark.parametrize("action,target,expected", [
    ("create_new", None, RiskLevel.LOW),
    ("ignore", None, RiskLevel.LOW),
    ("map_existing", "task-1", RiskLevel.MEDIUM),
    ("append_spec", "task-2", RiskLevel.MEDIUM),
])
def test_risk_defaults_by_action(action, target, expected):
    answer = _answer(action=action, targetRecordId=target)
    del answer["riskLevel"]
    assert _classify(answer).risk_level == expected


def test_invalid_risk_uses_default():
    assert _classify(_answer(riskLevel="catastrophic")).risk_level == RiskLevel.LOW


def test_confidence_is_clamped():
    assert _classify(_answer(confidence=1.7)).confidence == 1.0
    assert _classify(_answer(confidence=-2), floor=0.0).confidence == 0.0


def test_target_task_id_alias_is_accepted():
    result = _classify(_answer(action="append_spec", targetRecordId=None, targetTaskId="task-2"))
    assert result.action == MappingAction.APPEND_SPEC
    assert result.target_record_id == "task-2"


def test_unknown_category_becomes_action_and_description_defaults():
    result = _classify(_answer(category="epic", extractedDescription=""))
    assert result.category == ItemType.ACTION
    assert result.extracted_description == "Retry failed webhooks up to three times."


def test_decision_category_is_kept():
    assert _classify(_answer(category="Decision")).category == ItemType.DECISION


def test_floor_outside_range_is_rejected():
    with pytest.raises(ValueError):
        MappingEngine(StubClassifier(), confidence_floor=1.5)


# ------------------------------------------------------------------
# Degradation
# ------------------------------------------------------------------


@pytest.mark.parametrize("answer", [
    None,
    ["not", "an", "object"],
    _answer(action="merge"),
    _answer(confidence="high"),
    _answer(confidence=True),
    _answer(confidence=float("nan")),
    _answer(extractedTitle=""),
    {k: v for k, v in _answer().items() if k != "confidence"},
])
def test_malformed_answers_degrade(answer):
    result = _classify(answer)
    assert result.degraded
    assert result.action == MappingAction.CREATE_NEW
    assert result.confidence == 0.0
    assert result.risk_level == RiskLevel.LOW
    assert result.reasoning == DEGRADED_REASONING


def test_classifier_exception_degrades():
    engine = MappingEngine(StubClassifier(error=TimeoutError("timed out")))
    result = engine.classify("Budget sign-off moved to Friday.", CANDIDATES)
    assert result.degraded
    assert result.extracted_title == "Budget sign-off moved to Friday."


def test_degraded_title_is_first_line_truncated():
    long_line = "x" * 120
    result = degraded_result(f"{long_line}\nsecond line")
    assert len(result.extracted_title) == 80
    assert result.extracted_title.endswith("…")
    assert degraded_result("   ").extracted_title == "Untitled"


def test_request_truncates_candidate_descriptions():
    long = Candidate(id="c1", title="T", description="d" * 500, similarity=0.9)
    stub = StubClassifier(_answer())
    MappingEngine(stub).classify("chunk text", [long], DocumentType.CONTRACT)

    request = stub.requests[0]
    assert request.document_type == DocumentType.CONTRACT
    assert request.candidates == ({"id": "c1", "title": "T", "description": "d" * 200},)


# ------------------------------------------------------------------
# Document type detection
# ------------------------------------------------------------------


def test_detect_document_type_parses_tag():
    assert detect_document_type("x", StubClassifier(doc_type="Meeting_Notes")) == (
        DocumentType.MEETING_NOTES
    )


def test_detect_document_type_unknown_tag_is_general():
    assert detect_document_type("x", StubClassifier(doc_type="memo")) == DocumentType.GENERAL


def test_detect_document_type_failure_is_general():
    stub = StubClassifier(error=ConnectionError("down"))
    assert detect_document_type("x", stub) == DocumentType.GENERAL


# ------------------------------------------------------------------
# LLMClassifier
# ------------------------------------------------------------------


def test_llm_classifier_sends_json_mode_prompt():
    complete = MagicMock(return_value=json.dumps(_answer()))
    clf = LLMClassifier(model="openai/gpt-4o-mini", timeout=12.0, complete_fn=complete)
    request = ClassificationRequest.build("Ship it.", CANDIDATES, DocumentType.MEETING_NOTES)

    data = clf.classify(request)

    assert data["extractedTitle"] == "Add retry logic"
    args, kwargs = complete.call_args
    assert args[0] == "openai/gpt-4o-mini"
    assert kwargs["json_mode"] is True
    assert kwargs["timeout"] == 12.0
    assert kwargs["num_retries"] == 0
    assert kwargs["temperature"] == pytest.approx(0.1)
    user_prompt = args[1][1]["content"]
    assert "meeting_notes" in user_prompt
    assert "task-1" in user_prompt
    assert "Ship it." in user_prompt


def test_llm_classifier_invalid_json_degrades_through_engine():
    clf = LLMClassifier(complete_fn=MagicMock(return_value="not json"))
    result = MappingEngine(clf).classify("Some chunk text here.", CANDIDATES)
    assert result.degraded


def test_llm_classifier_detect_type():
    clf = LLMClassifier(complete_fn=MagicMock(return_value='{"type": "contract"}'))
    assert clf.detect_type("This agreement ...") == "contract"
    assert detect_document_type("This agreement ...", clf) == DocumentType.CONTRACT
