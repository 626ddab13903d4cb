"""Existing work items that a chunk might map onto."""

from __future__ import annotations

from dataclasses import dataclass

from intake.db.models import ItemStatus
from intake.db.repository import Repository
from intake.rag.retriever import Retriever

DEFAULT_TOP_K = 5
DEFAULT_THRESHOLD = 0.3


@dataclass(frozen=True)
class Candidate:
    id: str
    title: str
    description: str
    similarity: float


class CandidateRetriever:
    """Top-K confirmed items for a chunk of text.

    Args:
        retriever: Backend used for the item search.
        repo: Repository used to resolve hits to current item rows.
        top_k: Maximum candidates per chunk.
        threshold: Minimum similarity (vector backend only).
    """

    def __init__(
        self,
        retriever: Retriever,
        repo: Repository,
        top_k: int = DEFAULT_TOP_K,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> None:
        self._retriever = retriever
        self._repo = repo
        self.top_k = top_k
        self.threshold = threshold

    def candidates_for(self, chunk_text: str, project_id: str) -> list[Candidate]:
        matches = self._retriever.search(
            chunk_text,
            project_id,
            source_type="item",
            top_k=self.top_k,
            threshold=self.threshold,
        )
        candidates: list[Candidate] = []
        for match in matches:
            item = self._repo.get_item(match.id)
            # Deleted since indexing, or no longer a confirmed record.
            if item is None or item.project_id != project_id:
                continue
            if item.status in (ItemStatus.SUGGESTION, ItemStatus.REJECTED):
                continue
            candidates.append(
                Candidate(
                    id=item.id,
                    title=item.title,
                    description=item.description,
                    similarity=match.similarity,
                )
            )
        return candidates
