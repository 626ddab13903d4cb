"""Project-scoped embedding index over a sqlite-vec table.

One vec table per embedding model (``vec_embeddings_<slug>``), partitioned by
``project_id``. Each vector shares its rowid with an ``embeddings`` row that
carries the source id, type, text and JSON metadata.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field

from intake.db.models import EmbeddingRecord
from intake.db.repository import Repository
from intake.db.vectors import (
    ensure_vec_table,
    model_to_slug,
    vec_table_exists,
    vec_table_name,
)
from intake.errors import EnrollmentError, RetrievalUnavailable
from intake.rag import llm_client

logger = logging.getLogger(__name__)

EmbedFn = Callable[[str], list[float]]

# sqlite-vec rejects KNN queries with k above this.
_MAX_KNN = 4096


@dataclass
class Match:
    """One retrieval hit.

    Attributes:
        id: Source id (item id or artifact id).
        content: Indexed text.
        metadata: Metadata stored alongside the vector.
        similarity: ``1 - cosine distance`` (heuristic score for keyword search).
        source_type: ``item`` or ``artifact``.
    """

    id: str
    content: str
    similarity: float
    source_type: str
    metadata: dict = field(default_factory=dict)


class EmbeddingIndex:
    """Embed and query text for one embedding model.

    Args:
        repo: Repository over an initialised connection.
        model: LiteLLM embedding model string.
        dimensions: Vector width of *model*.
        embed_fn: Text → vector. Defaults to ``llm_client.embed`` with *model*.
    """

    def __init__(
        self,
        repo: Repository,
        model: str,
        dimensions: int,
        embed_fn: EmbedFn | None = None,
    ) -> None:
        self._repo = repo
        self.model = model
        self.dimensions = dimensions
        self._slug = model_to_slug(model)
        self.table = vec_table_name(self._slug)
        self._embed_fn: EmbedFn = embed_fn or (lambda text: llm_client.embed(model, text))

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def embed(
        self,
        content: str,
        source_id: str,
        source_type: str,
        project_id: str,
        metadata: dict | None = None,
    ) -> bool:
        """Embed *content* and store it, replacing any previous vector.

        Returns False (after logging a warning) when embedding or storage fails.
        """
        try:
            self.embed_or_raise(content, source_id, source_type, project_id, metadata)
        except EnrollmentError as exc:
            logger.warning("Embedding %s %s failed: %s", source_type, source_id, exc)
            return False
        return True

    def embed_or_raise(
        self,
        content: str,
        source_id: str,
        source_type: str,
        project_id: str,
        metadata: dict | None = None,
    ) -> int:
        """Like :meth:`embed` but raise EnrollmentError with the cause.

        Returns the rowid of the stored vector.
        """
        text = content.replace("\r\n", " ").replace("\n", " ")
        try:
            vector = self._embed_fn(text)
        except Exception as exc:
            raise EnrollmentError(f"embedding call failed: {exc}") from exc
        if len(vector) != self.dimensions:
            raise EnrollmentError(
                f"embedding has {len(vector)} dimensions, index expects {self.dimensions}"
            )

        record = EmbeddingRecord(
            source_id=source_id,
            source_type=source_type,
            project_id=project_id,
            content=content,
            metadata=json.dumps(metadata or {}),
        )
        try:
            ensure_vec_table(self._repo.conn, self._slug, self.dimensions)
            return self._repo.upsert_embedding(self.table, record, vector)
        except sqlite3.Error as exc:
            self._repo.conn.rollback()
            raise EnrollmentError(f"storing embedding failed: {exc}") from exc

    def delete(self, source_id: str, source_type: str, project_id: str) -> bool:
        """Remove the vector for a source. Returns True if one existed."""
        return self._repo.delete_embedding(source_id, source_type, project_id) > 0

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def query(
        self,
        query_text: str,
        project_id: str,
        threshold: float,
        top_k: int,
        source_type: str | None = None,
    ) -> list[Match]:
        """Return up to *top_k* matches in *project_id* with similarity ≥ *threshold*.

        Raises:
            RetrievalUnavailable: No vec table yet, or the embedding call failed.
        """
        if top_k < 1:
            return []
        if not vec_table_exists(self._repo.conn, self.table):
            raise RetrievalUnavailable(f"vector table {self.table} does not exist")
        try:
            vector = self._embed_fn(query_text.replace("\r\n", " ").replace("\n", " "))
        except Exception as exc:
            raise RetrievalUnavailable(f"query embedding failed: {exc}") from exc

        # Over-fetch when filtering by source type; vec0 cannot filter on it.
        limit = top_k if source_type is None else min(top_k * 4, _MAX_KNN)
        while True:
            try:
                hits = self._repo.search_vec(self.table, vector, project_id, limit=limit)
            except sqlite3.Error as exc:
                raise RetrievalUnavailable(f"vector search failed: {exc}") from exc

            matches = [
                _to_match(record, distance)
                for record, distance in hits
                if source_type is None or record.source_type == source_type
            ]
            matches = [m for m in matches if m.similarity >= threshold]
            exhausted = len(hits) < limit or limit >= _MAX_KNN
            if len(matches) >= top_k or exhausted or source_type is None:
                break
            limit = min(limit * 2, _MAX_KNN)

        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:top_k]


def _to_match(record: EmbeddingRecord, distance: float) -> Match:
    return Match(
        id=record.source_id,
        content=record.content,
        similarity=1.0 - float(distance),
        source_type=record.source_type,
        metadata=record.metadata_dict,
    )
