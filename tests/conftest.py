"""Shared pytest fixtures."""

from __future__ import annotations

import zlib

import pytest

from intake.db.connection import Database
from intake.db.repository import Repository
from intake.db.schema import initialize
from intake.rag.index import EmbeddingIndex

FAKE_DIMS = 8
FAKE_MODEL = "fake/bag-of-words"


def fake_embed(text: str) -> list[float]:
    """Deterministic bag-of-words vector; never all-zero."""
    vec = [0.01] * FAKE_DIMS
    for word in text.lower().split():
        vec[zlib.crc32(word.encode("utf-8")) % FAKE_DIMS] += 1.0
    return vec


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".intake.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def embedder():
    """The fake embedding function itself."""
    return fake_embed


@pytest.fixture
def index(repo):
    """EmbeddingIndex over the fake embedder."""
    return EmbeddingIndex(repo, FAKE_MODEL, FAKE_DIMS, embed_fn=fake_embed)
