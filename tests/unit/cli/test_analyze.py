"""Tests for `intake analyze`."""

from __future__ import annotations

from typer.testing import CliRunner

from intake.cli.main import app
from intake.db.connection import Database
from intake.db.models import Artifact, ItemStatus
from intake.db.repository import Repository

runner = CliRunner()

NOTES = (
    "Weekly sync, 3 March.\n\n"
    "We agreed to launch the beta in March once payments are stable."
)


def _repo(db_path):
    conn = Database(db_path).connect()
    return Repository(conn), conn


def _write_notes(tmp_path, text=NOTES):
    path = tmp_path / "notes.md"
    path.write_text(text, encoding="utf-8")
    return path


def test_analyze_creates_suggestions(workspace, tmp_path, scripted_llm):
    notes = _write_notes(tmp_path)
    result = runner.invoke(
        app, ["analyze", str(notes), "--project", "acme", "--db", str(workspace)]
    )

    assert result.exit_code == 0, result.output
    assert "meeting_notes" in result.output
    assert "1 suggestion(s) added" in result.output

    repo, conn = _repo(workspace)
    try:
        (item,) = repo.list_items("acme")
        assert item.status == ItemStatus.SUGGESTION
        assert item.title == "Launch beta"
        assert item.pending_artifact.content == NOTES
        assert item.meta["document_type"] == "meeting_notes"
    finally:
        conn.close()


def test_analyze_reads_stdin_and_project_env(workspace, scripted_llm, monkeypatch):
    monkeypatch.setenv("INTAKE_PROJECT", "from-env")
    result = runner.invoke(app, ["analyze", "-", "--db", str(workspace)], input=NOTES)

    assert result.exit_code == 0, result.output
    repo, conn = _repo(workspace)
    try:
        assert len(repo.list_items("from-env")) == 1
    finally:
        conn.close()


def test_analyze_dry_run_creates_nothing(workspace, tmp_path, scripted_llm):
    notes = _write_notes(tmp_path)
    result = runner.invoke(
        app, ["analyze", str(notes), "--db", str(workspace), "--dry-run", "--type", "contract"]
    )

    assert result.exit_code == 0, result.output
    assert "Dry run" in result.output
    assert "contract" in result.output
    repo, conn = _repo(workspace)
    try:
        assert repo.list_items("default") == []
    finally:
        conn.close()


def test_analyze_existing_artifact(workspace, scripted_llm):
    repo, conn = _repo(workspace)
    repo.add_artifact(Artifact(id="a1", project_id="acme", original_content=NOTES))
    conn.close()

    result = runner.invoke(
        app, ["analyze", "--artifact", "a1", "--project", "acme", "--db", str(workspace)]
    )

    assert result.exit_code == 0, result.output
    repo, conn = _repo(workspace)
    try:
        (item,) = repo.list_items("acme")
        assert item.source_artifact_id == "a1"
        assert item.pending_artifact is None
    finally:
        conn.close()


def test_analyze_classifier_down_fails_without_storing(workspace, tmp_path, scripted_llm):
    scripted_llm.answers["chunk_error"] = TimeoutError("provider timed out")
    notes = _write_notes(tmp_path)

    result = runner.invoke(
        app, ["analyze", str(notes), "--project", "acme", "--db", str(workspace)]
    )

    assert result.exit_code == 1
    assert "Analysis failed" in result.output
    repo, conn = _repo(workspace)
    try:
        assert repo.list_items("acme") == []
    finally:
        conn.close()


def test_analyze_empty_file(workspace, tmp_path):
    notes = _write_notes(tmp_path, "   \n")
    result = runner.invoke(app, ["analyze", str(notes), "--db", str(workspace)])
    assert result.exit_code == 1
    assert "Nothing to analyse" in result.output


def test_analyze_missing_file(workspace, tmp_path):
    result = runner.invoke(
        app, ["analyze", str(tmp_path / "missing.md"), "--db", str(workspace)]
    )
    assert result.exit_code == 1
    assert "File not found" in result.output


def test_analyze_unknown_artifact(workspace, scripted_llm):
    result = runner.invoke(app, ["analyze", "--artifact", "ghost", "--db", str(workspace)])
    assert result.exit_code == 1
    assert "ghost" in result.output


def test_analyze_without_api_key(workspace, tmp_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY")
    notes = _write_notes(tmp_path)
    result = runner.invoke(app, ["analyze", str(notes), "--db", str(workspace)])
    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output


def test_analyze_without_database(tmp_path, monkeypatch):
    monkeypatch.setattr("intake.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    notes = _write_notes(tmp_path)
    result = runner.invoke(app, ["analyze", str(notes), "--db", str(tmp_path / ".intake.db")])
    assert result.exit_code == 1
    assert "intake init" in result.output


def test_analyze_invalid_config(workspace, tmp_path):
    (tmp_path / "intake.yaml").write_text("retrieval:\n  backend: bm25\n")
    notes = _write_notes(tmp_path)
    result = runner.invoke(app, ["analyze", str(notes), "--db", str(workspace)])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
