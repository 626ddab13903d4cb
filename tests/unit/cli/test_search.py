"""Tests for `intake search` and `intake reindex`."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from typer.testing import CliRunner

from intake.cli.main import app
from intake.db.connection import Database
from intake.db.models import Artifact, EnrollmentState, Item, ItemStatus, ItemType
from intake.db.repository import Repository

runner = CliRunner()


def _seed(db_path, enrolled=True, linked=True):
    conn = Database(db_path).connect()
    repo = Repository(conn)
    repo.add_artifact(
        Artifact(
            id="a1",
            project_id="acme",
            original_content="Refund policy: refunds settle within five days.",
            enrollment_state=EnrollmentState.ENROLLED if enrolled else EnrollmentState.PENDING,
            meta={"file_name": "policy.md"},
        )
    )
    repo.add_item(
        Item(id="i1", project_id="acme", type=ItemType.ACTION, title="Refund flow",
             status=ItemStatus.NOT_STARTED, source_artifact_id="a1" if linked else None)
    )
    conn.close()


def test_search_knowledge_base(workspace):
    _seed(workspace)
    result = runner.invoke(
        app, ["search", "refunds", "--project", "acme", "--db", str(workspace)]
    )
    assert result.exit_code == 0, result.output
    assert "policy.md" in result.output


def test_search_items(workspace):
    _seed(workspace)
    result = runner.invoke(
        app, ["search", "refund", "--in", "item", "--project", "acme", "--db", str(workspace)]
    )
    assert result.exit_code == 0, result.output
    assert "Refund flow" in result.output


def test_search_rejects_unknown_scope(workspace):
    result = runner.invoke(app, ["search", "x", "--in", "chunks", "--db", str(workspace)])
    assert result.exit_code == 1
    assert "--in" in result.output


def test_search_no_matches(workspace):
    result = runner.invoke(app, ["search", "anything", "--db", str(workspace)])
    assert result.exit_code == 0
    assert "No matches" in result.output


def test_reindex_requires_vector_backend(workspace):
    result = runner.invoke(app, ["reindex", "--db", str(workspace)])
    assert result.exit_code == 1
    assert "vector" in result.output


def test_reindex_embeds_artifacts_and_items(workspace, tmp_path):
    (tmp_path / "intake.yaml").write_text(
        "retrieval:\n  backend: vector\nembedding:\n  dimensions: 2\n"
    )
    _seed(workspace, enrolled=False)
    response = MagicMock()
    response.data = [{"embedding": [0.6, 0.8]}]

    with patch("intake.rag.llm_client.litellm.embedding", return_value=response) as mock_e:
        result = runner.invoke(app, ["reindex", "--project", "acme", "--db", str(workspace)])

    assert result.exit_code == 0, result.output
    assert "Embedded 2" in result.output
    assert mock_e.call_count == 2
    conn = Database(workspace).connect()
    try:
        assert Repository(conn).get_artifact("a1").enrollment_state == EnrollmentState.ENROLLED
    finally:
        conn.close()


def test_reindex_reports_failures(workspace, tmp_path):
    (tmp_path / "intake.yaml").write_text(
        "retrieval:\n  backend: vector\nembedding:\n  dimensions: 2\n"
    )
    _seed(workspace, enrolled=False)

    with patch("intake.rag.llm_client.litellm.embedding", side_effect=ConnectionError("down")):
        result = runner.invoke(app, ["reindex", "--project", "acme", "--db", str(workspace)])

    assert result.exit_code == 1
    assert "Failed 2" in result.output


def test_reindex_leaves_unconfirmed_artifact_out(workspace, tmp_path):
    (tmp_path / "intake.yaml").write_text(
        "retrieval:\n  backend: vector\nembedding:\n  dimensions: 2\n"
    )
    _seed(workspace, enrolled=False, linked=False)
    response = MagicMock()
    response.data = [{"embedding": [0.6, 0.8]}]

    with patch("intake.rag.llm_client.litellm.embedding", return_value=response) as mock_e:
        result = runner.invoke(app, ["reindex", "--project", "acme", "--db", str(workspace)])

    assert result.exit_code == 0, result.output
    assert "Embedded 1" in result.output
    assert mock_e.call_count == 1
    conn = Database(workspace).connect()
    try:
        repo = Repository(conn)
        assert repo.get_artifact("a1").enrollment_state == EnrollmentState.PENDING
        assert repo.get_embedding_record("a1", "artifact", "acme") is None
    finally:
        conn.close()
