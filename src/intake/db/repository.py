"""Repository pattern for all intake database operations.

Single interface for: artifacts, items (drafts and confirmed), embedding
records and their sqlite-vec vectors. Vec tables are model-managed
(ensure_vec_table); the repository handles read + write.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable
from datetime import datetime, timezone

from intake.db.models import (
    Artifact,
    EmbeddingRecord,
    EnrollmentState,
    Item,
    ItemStatus,
    ItemType,
    PendingArtifact,
)

_ITEM_COLUMNS = (
    "id, project_id, type, status, title, description, parent_id, "
    "source_artifact_id, meta, pending_artifact, created_at, updated_at"
)
_ARTIFACT_COLUMNS = (
    "id, project_id, content_type, original_content, enrollment_state, meta, created_at"
)

# Columns update_item() may touch; id, project_id and created_at are immutable.
_UPDATABLE_ITEM_FIELDS = frozenset(
    ["type", "status", "title", "description", "parent_id",
     "source_artifact_id", "meta", "pending_artifact"]
)


def utcnow() -> str:
    """Current UTC time as ISO-8601 (sortable as text)."""
    return datetime.now(timezone.utc).isoformat()


class Repository:
    """Data access layer for all intake database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see intake.db.schema.initialize).
        """
        self._conn = conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def add_artifact(self, artifact: Artifact) -> Artifact:
        """Insert an artifact, stamping ``created_at`` if unset."""
        self._insert_artifact(artifact)
        self._conn.commit()
        return artifact

    def add_item_artifact(self, item_id: str, artifact: Artifact) -> Artifact:
        """Insert *artifact* and link it as the item's source in one transaction.

        The item's pending payload is cleared in the same commit, so a
        failure leaves neither the artifact nor the link behind.

        Raises:
            LookupError: If the item does not exist.
        """
        try:
            self._insert_artifact(artifact)
            cur = self._conn.execute(
                "UPDATE items SET source_artifact_id = ?, pending_artifact = NULL, "
                "updated_at = ? WHERE id = ?",
                (artifact.id, utcnow(), item_id),
            )
            if cur.rowcount == 0:
                raise LookupError(f"Item '{item_id}' not found")
        except Exception:
            self._conn.rollback()
            raise
        self._conn.commit()
        return artifact

    def _insert_artifact(self, artifact: Artifact) -> None:
        artifact.created_at = artifact.created_at or utcnow()
        self._conn.execute(
            f"INSERT INTO artifacts ({_ARTIFACT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                artifact.id,
                artifact.project_id,
                artifact.content_type,
                artifact.original_content,
                EnrollmentState(artifact.enrollment_state).value,
                json.dumps(artifact.meta),
                artifact.created_at,
            ),
        )

    def get_artifact(self, artifact_id: str) -> Artifact | None:
        row = self._conn.execute(
            f"SELECT {_ARTIFACT_COLUMNS} FROM artifacts WHERE id = ?", (artifact_id,)
        ).fetchone()
        return _row_to_artifact(row) if row else None

    def list_artifacts(self, project_id: str) -> list[Artifact]:
        """Return the project's artifacts, newest first."""
        rows = self._conn.execute(
            f"SELECT {_ARTIFACT_COLUMNS} FROM artifacts WHERE project_id = ? "
            "ORDER BY created_at DESC, rowid DESC",
            (project_id,),
        ).fetchall()
        return [_row_to_artifact(r) for r in rows]

    def set_enrollment_state(self, artifact_id: str, state: EnrollmentState) -> None:
        self._conn.execute(
            "UPDATE artifacts SET enrollment_state = ? WHERE id = ?",
            (EnrollmentState(state).value, artifact_id),
        )
        self._conn.commit()

    def update_artifact_meta(self, artifact_id: str, meta: dict) -> None:
        self._conn.execute(
            "UPDATE artifacts SET meta = ? WHERE id = ?", (json.dumps(meta), artifact_id)
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def add_item(self, item: Item) -> Item:
        """Insert an item, stamping ``created_at`` / ``updated_at``."""
        now = utcnow()
        item.created_at = item.created_at or now
        item.updated_at = now
        self._conn.execute(
            f"INSERT INTO items ({_ITEM_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                item.id,
                item.project_id,
                ItemType(item.type).value,
                ItemStatus(item.status).value,
                item.title,
                item.description,
                item.parent_id,
                item.source_artifact_id,
                json.dumps(item.meta),
                item.pending_artifact.to_json() if item.pending_artifact else None,
                item.created_at,
                item.updated_at,
            ),
        )
        self._conn.commit()
        return item

    def get_item(self, item_id: str) -> Item | None:
        row = self._conn.execute(
            f"SELECT {_ITEM_COLUMNS} FROM items WHERE id = ?", (item_id,)
        ).fetchone()
        return _row_to_item(row) if row else None

    def list_items(
        self,
        project_id: str,
        statuses: Iterable[ItemStatus] | None = None,
        exclude_statuses: Iterable[ItemStatus] | None = None,
    ) -> list[Item]:
        """Return the project's items ordered by creation time (oldest first)."""
        sql = f"SELECT {_ITEM_COLUMNS} FROM items WHERE project_id = ?"
        params: list[object] = [project_id]
        if statuses is not None:
            values = [ItemStatus(s).value for s in statuses]
            sql += f" AND status IN ({','.join('?' * len(values))})"
            params.extend(values)
        if exclude_statuses is not None:
            values = [ItemStatus(s).value for s in exclude_statuses]
            sql += f" AND status NOT IN ({','.join('?' * len(values))})"
            params.extend(values)
        sql += " ORDER BY created_at, rowid"
        return [_row_to_item(r) for r in self._conn.execute(sql, params).fetchall()]

    def update_item(self, item_id: str, **fields: object) -> Item | None:
        """Update *fields* on an item and refresh ``updated_at``.

        Returns the updated item, or None if no such item exists.

        Raises:
            ValueError: If a field is not updatable.
        """
        unknown = set(fields) - _UPDATABLE_ITEM_FIELDS
        if unknown:
            raise ValueError(f"Cannot update item field(s): {', '.join(sorted(unknown))}")

        assignments: list[str] = []
        params: list[object] = []
        for name, value in fields.items():
            assignments.append(f"{name} = ?")
            params.append(_encode_item_field(name, value))
        assignments.append("updated_at = ?")
        params.append(utcnow())
        params.append(item_id)

        cur = self._conn.execute(
            f"UPDATE items SET {', '.join(assignments)} WHERE id = ?", params
        )
        self._conn.commit()
        if cur.rowcount == 0:
            return None
        return self.get_item(item_id)

    def delete_item(self, item_id: str) -> bool:
        """Hard-delete an item. Returns True if a row was removed."""
        cur = self._conn.execute("DELETE FROM items WHERE id = ?", (item_id,))
        self._conn.commit()
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Embedding records + vectors
    # ------------------------------------------------------------------

    def upsert_embedding(
        self, table: str, record: EmbeddingRecord, embedding: list[float]
    ) -> int:
        """Replace the embedding for (source_id, source_type, project_id).

        Returns the rowid shared by the embeddings row and the vec row.
        """
        self._delete_embedding_rows(record.source_id, record.source_type, record.project_id)
        cur = self._conn.execute(
            """
            INSERT INTO embeddings (source_id, source_type, project_id, content, metadata)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                record.source_id,
                record.source_type,
                record.project_id,
                record.content,
                record.metadata,
            ),
        )
        rowid = cur.lastrowid
        self._conn.execute(
            f"INSERT INTO {table}(rowid, project_id, embedding) VALUES (?, ?, ?)",
            (rowid, record.project_id, json.dumps(embedding)),
        )
        self._conn.commit()
        record.rowid = rowid
        return rowid

    def get_embedding_record(
        self, source_id: str, source_type: str, project_id: str
    ) -> EmbeddingRecord | None:
        row = self._conn.execute(
            """
            SELECT rowid, source_id, source_type, project_id, content, metadata, created_at
            FROM embeddings WHERE source_id = ? AND source_type = ? AND project_id = ?
            """,
            (source_id, source_type, project_id),
        ).fetchone()
        return _row_to_embedding(row) if row else None

    def delete_embedding(self, source_id: str, source_type: str, project_id: str) -> int:
        """Delete an embedding record and its vectors. Returns rows removed."""
        removed = self._delete_embedding_rows(source_id, source_type, project_id)
        self._conn.commit()
        return removed

    def search_vec(
        self, table: str, embedding: list[float], project_id: str, limit: int = 10
    ) -> list[tuple[EmbeddingRecord, float]]:
        """Nearest-neighbour search inside one project partition.

        Returns (record, cosine distance) sorted by distance.
        """
        vec_rows = self._conn.execute(
            f"SELECT rowid, distance FROM {table} "
            "WHERE embedding MATCH ? AND k = ? AND project_id = ? ORDER BY distance",
            (json.dumps(embedding), limit, project_id),
        ).fetchall()

        results: list[tuple[EmbeddingRecord, float]] = []
        for vec_row in vec_rows:
            row = self._conn.execute(
                """
                SELECT rowid, source_id, source_type, project_id, content, metadata, created_at
                FROM embeddings WHERE rowid = ?
                """,
                (vec_row["rowid"],),
            ).fetchone()
            if row is not None and row["project_id"] == project_id:
                results.append((_row_to_embedding(row), vec_row["distance"]))
        return results

    def _delete_embedding_rows(self, source_id: str, source_type: str, project_id: str) -> int:
        rowids = [
            r[0]
            for r in self._conn.execute(
                "SELECT rowid FROM embeddings WHERE source_id = ? AND source_type = ? "
                "AND project_id = ?",
                (source_id, source_type, project_id),
            ).fetchall()
        ]
        if not rowids:
            return 0

        vec_tables = [
            r[0]
            for r in self._conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name LIKE 'vec_%'"
            ).fetchall()
        ]
        placeholders = ",".join("?" * len(rowids))
        for table in vec_tables:
            self._conn.execute(
                f"DELETE FROM [{table}] WHERE rowid IN ({placeholders})",  # noqa: S608
                rowids,
            )
        cur = self._conn.execute(
            f"DELETE FROM embeddings WHERE rowid IN ({placeholders})", rowids  # noqa: S608
        )
        return cur.rowcount


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _encode_item_field(name: str, value: object) -> object:
    if name == "meta":
        return json.dumps(value or {})
    if name == "pending_artifact":
        return value.to_json() if isinstance(value, PendingArtifact) else None
    if name == "type":
        return ItemType(value).value
    if name == "status":
        return ItemStatus(value).value
    return value


def _row_to_artifact(row: sqlite3.Row) -> Artifact:
    return Artifact(
        id=row["id"],
        project_id=row["project_id"],
        content_type=row["content_type"],
        original_content=row["original_content"],
        enrollment_state=EnrollmentState(row["enrollment_state"]),
        meta=json.loads(row["meta"] or "{}"),
        created_at=row["created_at"],
    )


def _row_to_item(row: sqlite3.Row) -> Item:
    pending = row["pending_artifact"]
    return Item(
        id=row["id"],
        project_id=row["project_id"],
        type=ItemType(row["type"]),
        status=ItemStatus(row["status"]),
        title=row["title"],
        description=row["description"],
        parent_id=row["parent_id"],
        source_artifact_id=row["source_artifact_id"],
        meta=json.loads(row["meta"] or "{}"),
        pending_artifact=PendingArtifact.from_json(pending) if pending else None,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_embedding(row: sqlite3.Row) -> EmbeddingRecord:
    return EmbeddingRecord(
        rowid=row["rowid"],
        source_id=row["source_id"],
        source_type=row["source_type"],
        project_id=row["project_id"],
        content=row["content"],
        metadata=row["metadata"],
        created_at=row["created_at"],
    )
