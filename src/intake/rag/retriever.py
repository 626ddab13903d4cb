"""Retrieval backends: vector KNN with a deterministic keyword fallback.

Backends share one ``search()`` signature and are chosen once, from
``retrieval.backend``, by :func:`build_retriever`:

  vector     EmbeddingIndex.query; on RetrievalUnavailable the query is
             answered by the fallback (the heuristic) instead.
  heuristic  Keyword overlap over stored rows, no network calls:
               +2 per query token found in the content
               +5 per query token found in the title
               +1 if the row was created in the last 24 hours
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from intake.db.models import EnrollmentState, ItemStatus
from intake.db.repository import Repository
from intake.errors import RetrievalUnavailable
from intake.rag.index import EmbeddingIndex, Match

if TYPE_CHECKING:
    from intake.config import IntakeConfig

logger = logging.getLogger(__name__)

SOURCE_TYPES = ("item", "artifact")

_CONTENT_HIT = 2
_TITLE_HIT = 5
_RECENT_BONUS = 1
_RECENT_WINDOW = timedelta(hours=24)
_UNSCORED_SIMILARITY = 0.1

# Drafts and rejected rows are not part of the searchable project state.
_HIDDEN_ITEM_STATUSES = (ItemStatus.SUGGESTION, ItemStatus.REJECTED)


class Retriever(ABC):
    """Capability interface for project-scoped text retrieval."""

    @abstractmethod
    def search(
        self,
        query: str,
        project_id: str,
        *,
        source_type: str,
        top_k: int,
        threshold: float,
    ) -> list[Match]:
        """Return up to *top_k* matches of *source_type*, best-first."""


class VectorRetriever(Retriever):
    """Dense retrieval through an :class:`EmbeddingIndex`."""

    def __init__(self, index: EmbeddingIndex, fallback: Retriever | None = None) -> None:
        self._index = index
        self._fallback = fallback

    def search(
        self,
        query: str,
        project_id: str,
        *,
        source_type: str,
        top_k: int,
        threshold: float,
    ) -> list[Match]:
        try:
            return self._index.query(
                query, project_id, threshold=threshold, top_k=top_k, source_type=source_type
            )
        except RetrievalUnavailable as exc:
            if self._fallback is None:
                logger.warning("Vector retrieval unavailable, no fallback: %s", exc)
                return []
            logger.warning("Vector retrieval unavailable, using keyword fallback: %s", exc)
            return self._fallback.search(
                query,
                project_id,
                source_type=source_type,
                top_k=top_k,
                threshold=threshold,
            )


class HeuristicRetriever(Retriever):
    """Keyword-overlap scoring over the repository.

    *threshold* is accepted for interface compatibility but not applied; raw
    scores are not similarities.
    """

    def __init__(self, repo: Repository, now: datetime | None = None) -> None:
        self._repo = repo
        self._now = now

    def search(
        self,
        query: str,
        project_id: str,
        *,
        source_type: str,
        top_k: int,
        threshold: float = 0.0,
    ) -> list[Match]:
        if source_type not in SOURCE_TYPES:
            raise ValueError(f"source_type must be one of {SOURCE_TYPES}, got '{source_type}'")
        if top_k < 1:
            return []

        rows = self._rows(project_id, source_type)
        tokens = query.lower().split()
        now = self._now or datetime.now(timezone.utc)

        scored: list[tuple[int, str, Match]] = []
        for title, created_at, match in rows:
            score = _score(tokens, title, match.content, created_at, now)
            if score > 0:
                match.similarity = float(score)
                scored.append((score, created_at or "", match))

        if not scored:
            recent = sorted(rows, key=lambda r: r[1] or "", reverse=True)[:top_k]
            for _, _, match in recent:
                match.similarity = _UNSCORED_SIMILARITY
            return [m for _, _, m in recent]

        # Highest score first, newest first among equals.
        scored.sort(key=lambda s: (s[0], s[1]), reverse=True)
        return [m for _, _, m in scored[:top_k]]

    def _rows(self, project_id: str, source_type: str) -> list[tuple[str, str | None, Match]]:
        """Return (title, created_at, Match) for every searchable row."""
        if source_type == "artifact":
            return [
                (
                    a.meta.get("file_name") or a.id,
                    a.created_at,
                    Match(
                        id=a.id,
                        content=a.original_content,
                        similarity=0.0,
                        source_type="artifact",
                        metadata={
                            "title": a.meta.get("file_name") or "Untitled",
                            "source_id": a.id,
                            "type": a.content_type,
                            "created_at": a.created_at,
                        },
                    ),
                )
                for a in self._repo.list_artifacts(project_id)
                if a.enrollment_state == EnrollmentState.ENROLLED
            ]
        return [
            (
                i.title,
                i.created_at,
                Match(
                    id=i.id,
                    content=i.description,
                    similarity=0.0,
                    source_type="item",
                    metadata={"title": i.title, "type": i.type.value},
                ),
            )
            for i in self._repo.list_items(project_id, exclude_statuses=_HIDDEN_ITEM_STATUSES)
        ]


def _score(
    tokens: list[str], title: str, content: str, created_at: str | None, now: datetime
) -> int:
    content_lc = (content or "").lower()
    title_lc = (title or "").lower()
    score = 0
    for token in tokens:
        if token in content_lc:
            score += _CONTENT_HIT
        if token in title_lc:
            score += _TITLE_HIT
    if _is_recent(created_at, now):
        score += _RECENT_BONUS
    return score


def _is_recent(created_at: str | None, now: datetime) -> bool:
    if not created_at:
        return False
    try:
        created = datetime.fromisoformat(created_at)
    except ValueError:
        return False
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return now - created < _RECENT_WINDOW


# ------------------------------------------------------------------
# Construction + knowledge-base search
# ------------------------------------------------------------------


def build_retriever(
    config: IntakeConfig,
    repo: Repository,
    index: EmbeddingIndex | None = None,
) -> Retriever:
    """Return the retriever selected by ``config.retrieval.backend``.

    Raises:
        ValueError: If the backend name is unknown.
    """
    backend = config.retrieval.backend
    if backend == "heuristic":
        return HeuristicRetriever(repo)
    if backend == "vector":
        if index is None:
            index = EmbeddingIndex(repo, config.embedding.model, config.embedding.dimensions)
        return VectorRetriever(index, fallback=HeuristicRetriever(repo))
    raise ValueError(f"Unknown retrieval backend '{backend}' (expected vector | heuristic)")


def query_knowledge_base(
    retriever: Retriever,
    query: str,
    project_id: str,
    top_k: int = 5,
    threshold: float = 0.5,
) -> list[Match]:
    """Search the project's enrolled artifacts for *query*."""
    if not query.strip():
        return []
    return retriever.search(
        query, project_id, source_type="artifact", top_k=top_k, threshold=threshold
    )
