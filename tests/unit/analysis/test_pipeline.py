"""Tests for DocumentAnalyzer (analyze + create_suggestions)."""

from __future__ import annotations

import threading

import pytest

from intake.analysis.candidates import CandidateRetriever
from intake.analysis.mapping import DocumentType, MappingAction, MappingEngine
from intake.analysis.pipeline import DocumentAnalyzer, analyze_document
from intake.config import IntakeConfig
from intake.db.models import Artifact, Item, ItemStatus, ItemType
from intake.errors import AnalysisError, InputError
from intake.ingest.splitter import TextSplitter
from intake.rag.retriever import HeuristicRetriever

PARAGRAPHS = [
    "Alpha: finalize the payment provider contract.",
    "Bravo: the onboarding flow needs a new signup page.",
    "Charlie: webhook retries are timing out in staging.",
    "Delta: lunch menu for the offsite is undecided.",
    "Echo: payment refunds must settle within 5 days.",
]
DOCUMENT = "\n\n".join(PARAGRAPHS)

ANSWERS = {
    "Alpha": {"action": "map_existing", "targetRecordId": "task-1", "riskLevel": "high"},
    "Bravo": {"action": "create_new", "category": "todo"},
    "Delta": {"action": "ignore"},
    "Echo": {"action": "append_spec", "targetRecordId": "task-1"},
}


class ScriptedClassifier:
    """Answers by the chunk's leading keyword; ``fail`` keywords raise."""

    def __init__(self, fail=("Charlie",), doc_type="meeting_notes"):
        self.fail = set(fail)
        self.doc_type = doc_type
        self.detect_calls = 0
        self.threads: set[str] = set()

    def classify(self, request):
        self.threads.add(threading.current_thread().name)
        key = request.chunk_text.split(":", 1)[0]
        if key in self.fail or "*" in self.fail:
            raise TimeoutError(f"{key} timed out")
        answer = {
            "extractedTitle": f"{key} item",
            "extractedDescription": request.chunk_text,
            "category": "action",
            "confidence": 0.9,
            "reasoning": f"{key} reasoning",
        }
        answer.update(ANSWERS.get(key, {"action": "create_new"}))
        return answer

    def detect_type(self, excerpt):
        self.detect_calls += 1
        return self.doc_type


@pytest.fixture
def task(repo):
    return repo.add_item(
        Item(
            id="task-1",
            project_id="p1",
            type=ItemType.ACTION,
            title="Payment provider",
            description="Integrate the payment provider",
            status=ItemStatus.NOT_STARTED,
        )
    )


def _analyzer(repo, classifier=None, **kw):
    classifier = classifier or ScriptedClassifier()
    return DocumentAnalyzer(
        repo,
        CandidateRetriever(HeuristicRetriever(repo), repo),
        MappingEngine(classifier),
        classifier,
        splitter=TextSplitter(chunk_size=60, chunk_overlap=0),
        **kw,
    )


# ------------------------------------------------------------------
# analyze
# ------------------------------------------------------------------


def test_one_timeout_degrades_only_that_chunk(repo, task):
    result = _analyzer(repo, max_workers=3).analyze(DOCUMENT, "p1")

    assert len(result.chunks) == 5
    assert [c.original_text for c in result.chunks] == PARAGRAPHS
    assert [c.source_location for c in result.chunks] == [f"Section {n}" for n in range(1, 6)]

    degraded = [c for c in result.chunks if c.mapping.degraded]
    assert [c.original_text for c in degraded] == [PARAGRAPHS[2]]
    assert degraded[0].mapping.action == MappingAction.CREATE_NEW
    assert degraded[0].mapping.confidence == 0.0

    summary = result.summary
    assert summary.total_items == 5
    assert summary.new_items == 2
    assert summary.mapped_items == 1
    assert summary.appended_specs == 1
    assert summary.ignored_items == 1
    assert summary.critical_risks == 1
    assert summary.degraded_items == 1


def test_result_carries_type_and_candidates(repo, task):
    result = _analyzer(repo).analyze(DOCUMENT, "p1")

    assert result.document_type == DocumentType.MEETING_NOTES
    assert result.project_id == "p1"
    assert result.processed_at
    first = result.chunks[0]
    assert [c.id for c in first.candidates] == ["task-1"]
    assert first.mapping.target_record_id == "task-1"
    assert len({c.id for c in result.chunks}) == 5


def test_classification_runs_on_worker_threads(repo, task):
    clf = ScriptedClassifier(fail=())
    _analyzer(repo, clf, max_workers=2).analyze(DOCUMENT, "p1")
    assert clf.threads
    assert all(name.startswith("classify") for name in clf.threads)


def test_all_chunks_degraded_raises(repo):
    with pytest.raises(AnalysisError, match="5 chunk"):
        _analyzer(repo, ScriptedClassifier(fail=("*",))).analyze(DOCUMENT, "p1")


@pytest.mark.parametrize("content", ["", "   \n\n  "])
def test_empty_content_is_rejected(repo, content):
    with pytest.raises(InputError, match="empty"):
        _analyzer(repo).analyze(content, "p1")


def test_empty_project_is_rejected(repo):
    with pytest.raises(InputError, match="project_id"):
        _analyzer(repo).analyze(DOCUMENT, " ")


def test_explicit_document_type_skips_detection(repo):
    clf = ScriptedClassifier(fail=())
    result = _analyzer(repo, clf).analyze(DOCUMENT, "p1", document_type="contract")
    assert result.document_type == DocumentType.CONTRACT
    assert clf.detect_calls == 0


def test_short_fragments_are_skipped_but_keep_section_numbers(repo):
    # 46 and 51 characters respectively.
    text = PARAGRAPHS[0] + "\n\n" + PARAGRAPHS[1]
    result = _analyzer(repo, min_chunk_chars=50).analyze(text, "p1")
    assert [c.source_location for c in result.chunks] == ["Section 2"]


def test_max_chunks_caps_classification(repo):
    result = _analyzer(repo, ScriptedClassifier(fail=()), max_chunks=2).analyze(DOCUMENT, "p1")
    assert [c.original_text for c in result.chunks] == PARAGRAPHS[:2]


def test_existing_artifact_supplies_content(repo):
    repo.add_artifact(Artifact(id="a1", project_id="p1", original_content=PARAGRAPHS[1]))
    result = analyze_document(_analyzer(repo), "", "p1", existing_artifact_id="a1")
    assert result.artifact_id == "a1"
    assert [c.original_text for c in result.chunks] == [PARAGRAPHS[1]]


@pytest.mark.parametrize("artifact_project", [None, "p2"])
def test_unknown_or_foreign_artifact_is_rejected(repo, artifact_project):
    if artifact_project:
        repo.add_artifact(Artifact(id="a1", project_id=artifact_project, original_content="x"))
    with pytest.raises(InputError, match="a1"):
        _analyzer(repo).analyze(DOCUMENT, "p1", existing_artifact_id="a1")


def test_from_config_wires_pipeline(repo, task):
    cfg = IntakeConfig()
    cfg.retrieval.backend = "heuristic"
    cfg.splitter.chunk_size = 60
    cfg.splitter.chunk_overlap = 0
    cfg.analysis.max_chunks = 3

    analyzer = DocumentAnalyzer.from_config(cfg, repo, classifier=ScriptedClassifier(fail=()))
    result = analyzer.analyze(DOCUMENT, "p1")
    assert len(result.chunks) == 3
    assert analyzer.max_workers == cfg.classifier.max_workers


# ------------------------------------------------------------------
# create_suggestions
# ------------------------------------------------------------------


def test_create_suggestions_skips_ignored_by_default(repo, task):
    analyzer = _analyzer(repo)
    result = analyzer.analyze(DOCUMENT, "p1")

    items = analyzer.create_suggestions(result, "p1")

    assert [i.title for i in items] == ["Alpha item", "Bravo item", items[2].title, "Echo item"]
    assert all(i.status == ItemStatus.SUGGESTION for i in items)
    assert all(repo.get_item(i.id) is not None for i in items)


def test_suggestion_fields_for_mapped_chunk(repo, task):
    analyzer = _analyzer(repo)
    result = analyzer.analyze(DOCUMENT, "p1")

    mapped = analyzer.create_suggestions(result, "p1", [result.chunks[0].id])[0]
    stored = repo.get_item(mapped.id)

    assert stored.parent_id == "task-1"
    assert stored.type == ItemType.ACTION
    assert stored.meta == {
        "ai_source": True,
        "confidence": 0.9,
        "reasoning": "Alpha reasoning",
        "risk_level": "high",
        "mapping_action": "map_existing",
        "target_item_id": "task-1",
        "source_location": "Section 1",
        "document_type": "meeting_notes",
        "level": 1,
    }
    assert stored.pending_artifact.content == PARAGRAPHS[0]
    assert stored.pending_artifact.source_info == "meeting_notes · Section 1"
    assert stored.source_artifact_id is None


def test_suggestion_fields_for_append_and_degraded_chunks(repo, task):
    analyzer = _analyzer(repo)
    result = analyzer.analyze(DOCUMENT, "p1")

    degraded, appended = analyzer.create_suggestions(
        result, "p1", [result.chunks[2].id, result.chunks[4].id]
    )

    assert degraded.meta["degraded"] is True
    assert degraded.parent_id is None
    assert appended.parent_id == "task-1"
    assert appended.meta["requirement_snippet"] == PARAGRAPHS[4]
    assert "degraded" not in appended.meta


def test_suggestions_for_existing_artifact_reference_it(repo):
    repo.add_artifact(Artifact(id="a1", project_id="p1", original_content=PARAGRAPHS[1]))
    analyzer = _analyzer(repo)
    result = analyzer.analyze("", "p1", existing_artifact_id="a1")

    (item,) = analyzer.create_suggestions(result, "p1")
    stored = repo.get_item(item.id)
    assert stored.source_artifact_id == "a1"
    assert stored.pending_artifact is None
    assert stored.type == ItemType.TODO


def test_create_suggestions_rejects_unknown_chunk(repo, task):
    analyzer = _analyzer(repo)
    result = analyzer.analyze(DOCUMENT, "p1")
    with pytest.raises(InputError, match="nope"):
        analyzer.create_suggestions(result, "p1", ["nope"])
    assert repo.list_items("p1", statuses=[ItemStatus.SUGGESTION]) == []


def test_create_suggestions_rejects_project_mismatch(repo, task):
    analyzer = _analyzer(repo)
    result = analyzer.analyze(DOCUMENT, "p1")
    with pytest.raises(InputError, match="p2"):
        analyzer.create_suggestions(result, "p2")
