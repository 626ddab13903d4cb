"""Forward-only migration runner for the intake schema.

Vec tables (vec_embeddings_*) are NOT migration-managed: use ensure_vec_table().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS artifacts (
    id                TEXT PRIMARY KEY,
    project_id        TEXT NOT NULL,
    content_type      TEXT NOT NULL DEFAULT 'text',
    original_content  TEXT NOT NULL DEFAULT '',
    enrollment_state  TEXT NOT NULL DEFAULT 'pending'
                      CHECK (enrollment_state IN ('pending', 'enrolled')),
    meta              TEXT NOT NULL DEFAULT '{}',
    created_at        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_artifacts_project ON artifacts(project_id);

CREATE TABLE IF NOT EXISTS items (
    id                  TEXT PRIMARY KEY,
    project_id          TEXT NOT NULL,
    type                TEXT NOT NULL,
    status              TEXT NOT NULL,
    title               TEXT NOT NULL,
    description         TEXT NOT NULL DEFAULT '',
    parent_id           TEXT,
    source_artifact_id  TEXT REFERENCES artifacts(id) ON DELETE SET NULL,
    meta                TEXT NOT NULL DEFAULT '{}',
    pending_artifact    TEXT,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_project_status ON items(project_id, status);

CREATE TABLE IF NOT EXISTS embeddings (
    source_id    TEXT NOT NULL,
    source_type  TEXT NOT NULL CHECK (source_type IN ('item', 'artifact')),
    project_id   TEXT NOT NULL,
    content      TEXT NOT NULL,
    metadata     TEXT NOT NULL DEFAULT '{}',
    created_at   DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (source_id, source_type, project_id)
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
