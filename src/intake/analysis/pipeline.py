"""Document analysis: raw text → classified chunks → suggestions.

analyze()
  1. Validate input (and resolve an existing artifact's content).
  2. Detect the document type unless one is given.
  3. Split, drop fragments shorter than ``min_chunk_chars``, cap at ``max_chunks``.
  4. Retrieve candidates per chunk on the calling thread (sqlite connections
     are not shared across threads).
  5. Classify all chunks concurrently; output order equals input order.
  6. Publish an immutable AnalysisResult, or raise. Nothing partial escapes.

create_suggestions() turns the chunks a user selected into draft items.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from intake.analysis.candidates import Candidate, CandidateRetriever
from intake.analysis.mapping import (
    Classifier,
    DocumentType,
    LLMClassifier,
    MappingAction,
    MappingEngine,
    MappingResult,
    RiskLevel,
    detect_document_type,
)
from intake.db.models import Item, PendingArtifact
from intake.db.repository import Repository, utcnow
from intake.errors import AnalysisError, InputError
from intake.inbox.store import SuggestionStore
from intake.ingest.splitter import TextSplitter
from intake.rag.retriever import Retriever, build_retriever

if TYPE_CHECKING:
    from intake.config import IntakeConfig

logger = logging.getLogger(__name__)

DEFAULT_MIN_CHUNK_CHARS = 20


@dataclass(frozen=True)
class AnalysisChunk:
    id: str
    original_text: str
    source_location: str
    candidates: tuple[Candidate, ...]
    mapping: MappingResult


@dataclass(frozen=True)
class AnalysisSummary:
    total_items: int = 0
    new_items: int = 0
    mapped_items: int = 0
    appended_specs: int = 0
    ignored_items: int = 0
    critical_risks: int = 0
    degraded_items: int = 0

    @classmethod
    def from_chunks(cls, chunks: Iterable[AnalysisChunk]) -> AnalysisSummary:
        mappings = [c.mapping for c in chunks]

        def count(action: MappingAction) -> int:
            return sum(1 for m in mappings if m.action == action)

        return cls(
            total_items=len(mappings),
            new_items=count(MappingAction.CREATE_NEW),
            mapped_items=count(MappingAction.MAP_EXISTING),
            appended_specs=count(MappingAction.APPEND_SPEC),
            ignored_items=count(MappingAction.IGNORE),
            critical_risks=sum(1 for m in mappings if m.risk_level == RiskLevel.HIGH),
            degraded_items=sum(1 for m in mappings if m.degraded),
        )


@dataclass(frozen=True)
class AnalysisResult:
    project_id: str
    document_type: DocumentType
    chunks: tuple[AnalysisChunk, ...]
    summary: AnalysisSummary
    processed_at: str
    artifact_id: str | None = None

    def chunk(self, chunk_id: str) -> AnalysisChunk | None:
        return next((c for c in self.chunks if c.id == chunk_id), None)


class DocumentAnalyzer:
    """Run the analysis pipeline against one workspace database.

    Args:
        repo: Repository over the workspace database.
        candidates: Candidate lookup per chunk.
        engine: Mapping rules around the classifier.
        classifier: Used for document type detection.
        splitter: Text splitter (defaults to 1000/200 recursive).
        min_chunk_chars: Chunks shorter than this (after strip) are skipped.
        max_chunks: Classify at most this many chunks; 0 means no limit.
        max_workers: Concurrent classifier calls.
    """

    def __init__(
        self,
        repo: Repository,
        candidates: CandidateRetriever,
        engine: MappingEngine,
        classifier: Classifier,
        splitter: TextSplitter | None = None,
        min_chunk_chars: int = DEFAULT_MIN_CHUNK_CHARS,
        max_chunks: int = 0,
        max_workers: int = 4,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._repo = repo
        self._candidates = candidates
        self._engine = engine
        self._classifier = classifier
        self._splitter = splitter or TextSplitter()
        self.min_chunk_chars = min_chunk_chars
        self.max_chunks = max_chunks
        self.max_workers = max_workers

    @classmethod
    def from_config(
        cls,
        config: IntakeConfig,
        repo: Repository,
        retriever: Retriever | None = None,
        classifier: Classifier | None = None,
    ) -> DocumentAnalyzer:
        """Wire the pipeline from configuration."""
        retriever = retriever or build_retriever(config, repo)
        classifier = classifier or LLMClassifier(
            model=config.classifier.model,
            timeout=config.classifier.timeout,
            num_retries=config.classifier.num_retries,
        )
        return cls(
            repo,
            CandidateRetriever(
                retriever,
                repo,
                top_k=config.retrieval.candidate_top_k,
                threshold=config.retrieval.candidate_threshold,
            ),
            MappingEngine(classifier, confidence_floor=config.classifier.confidence_floor),
            classifier,
            splitter=TextSplitter(
                config.splitter.chunk_size,
                config.splitter.chunk_overlap,
                config.splitter.separators,
            ),
            min_chunk_chars=config.analysis.min_chunk_chars,
            max_chunks=config.analysis.max_chunks,
            max_workers=config.classifier.max_workers,
        )

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze(
        self,
        content: str,
        project_id: str,
        existing_artifact_id: str | None = None,
        document_type: DocumentType | str | None = None,
    ) -> AnalysisResult:
        """Analyse *content* and return the complete result.

        Raises:
            InputError: Empty content or project id, or an unknown artifact.
            AnalysisError: Every chunk failed classification.
        """
        if not project_id or not project_id.strip():
            raise InputError("project_id must not be empty")

        if existing_artifact_id is not None:
            artifact = self._repo.get_artifact(existing_artifact_id)
            if artifact is None or artifact.project_id != project_id:
                raise InputError(
                    f"Artifact '{existing_artifact_id}' not found in project '{project_id}'"
                )
            if not content or not content.strip():
                content = artifact.original_content

        if not content or not content.strip():
            raise InputError("Document content is empty")

        doc_type = (
            DocumentType.parse(document_type)
            if document_type is not None
            else detect_document_type(content, self._classifier)
        )

        sections = self._sections(content)
        logger.info("Analysing %d chunk(s) as %s", len(sections), doc_type.value)

        candidate_lists = [
            self._candidates.candidates_for(text, project_id) for _, text in sections
        ]
        mappings = self._classify_all(
            [text for _, text in sections], candidate_lists, doc_type
        )

        chunks = tuple(
            AnalysisChunk(
                id=str(uuid.uuid4()),
                original_text=text,
                source_location=location,
                candidates=tuple(cands),
                mapping=mapping,
            )
            for (location, text), cands, mapping in zip(sections, candidate_lists, mappings)
        )

        if chunks and all(c.mapping.degraded for c in chunks):
            raise AnalysisError(
                f"Classifier unavailable: all {len(chunks)} chunk(s) failed classification"
            )

        return AnalysisResult(
            project_id=project_id,
            document_type=doc_type,
            chunks=chunks,
            summary=AnalysisSummary.from_chunks(chunks),
            processed_at=utcnow(),
            artifact_id=existing_artifact_id,
        )

    def _sections(self, content: str) -> list[tuple[str, str]]:
        """Return (source_location, text) for every chunk worth classifying."""
        sections = [
            (f"Section {n}", text)
            for n, text in enumerate(self._splitter.split(content), start=1)
            if len(text.strip()) >= self.min_chunk_chars
        ]
        if self.max_chunks > 0:
            sections = sections[: self.max_chunks]
        return sections

    def _classify_all(
        self,
        texts: list[str],
        candidate_lists: list[list[Candidate]],
        doc_type: DocumentType,
    ) -> list[MappingResult]:
        if not texts:
            return []
        workers = min(self.max_workers, len(texts))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="classify") as pool:
            return list(
                pool.map(
                    lambda pair: self._engine.classify(pair[0], pair[1], doc_type),
                    zip(texts, candidate_lists),
                )
            )

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    def create_suggestions(
        self,
        result: AnalysisResult,
        project_id: str,
        chunk_ids: Iterable[str] | None = None,
    ) -> list[Item]:
        """Create one draft item per selected chunk.

        Args:
            result: A completed analysis.
            project_id: Must match the project the analysis ran against.
            chunk_ids: Chunks to keep. Defaults to every chunk not classified
                as ``ignore``.

        Raises:
            InputError: Unknown chunk id or project mismatch.
        """
        if project_id != result.project_id:
            raise InputError(
                f"Analysis belongs to project '{result.project_id}', not '{project_id}'"
            )

        if chunk_ids is None:
            selected = [c for c in result.chunks if c.mapping.action != MappingAction.IGNORE]
        else:
            selected = []
            for chunk_id in dict.fromkeys(chunk_ids):
                chunk = result.chunk(chunk_id)
                if chunk is None:
                    raise InputError(f"Unknown chunk id '{chunk_id}'")
                selected.append(chunk)

        store = SuggestionStore(self._repo)
        return [
            store.create(project_id, **_suggestion_fields(chunk, result))
            for chunk in selected
        ]


def _suggestion_fields(chunk: AnalysisChunk, result: AnalysisResult) -> dict:
    mapping = chunk.mapping
    meta: dict = {
        "ai_source": True,
        "confidence": mapping.confidence,
        "reasoning": mapping.reasoning,
        "risk_level": mapping.risk_level.value,
        "mapping_action": mapping.action.value,
        "target_item_id": mapping.target_record_id,
        "source_location": chunk.source_location,
        "document_type": result.document_type.value,
        "level": 1,
    }
    if mapping.degraded:
        meta["degraded"] = True
    if mapping.action == MappingAction.APPEND_SPEC:
        meta["requirement_snippet"] = chunk.original_text

    targeted = mapping.action in (MappingAction.MAP_EXISTING, MappingAction.APPEND_SPEC)
    fields: dict = {
        "type": mapping.category,
        "title": mapping.extracted_title,
        "description": mapping.extracted_description,
        "parent_id": mapping.target_record_id if targeted else None,
        "meta": meta,
    }
    if result.artifact_id is not None:
        fields["source_artifact_id"] = result.artifact_id
    else:
        fields["pending_artifact"] = PendingArtifact(
            content=chunk.original_text,
            content_type="text",
            source_info=f"{result.document_type.value} · {chunk.source_location}",
        )
    return fields


def analyze_document(
    analyzer: DocumentAnalyzer,
    content: str,
    project_id: str,
    existing_artifact_id: str | None = None,
    document_type: DocumentType | str | None = None,
) -> AnalysisResult:
    """Functional form of ``analyzer.analyze(...)``."""
    return analyzer.analyze(content, project_id, existing_artifact_id, document_type)
