"""Fixtures for CLI tests: an initialised workspace and a scripted LLM."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from intake.db.connection import Database
from intake.db.schema import initialize


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch) -> Path:
    """Initialised .intake.db (heuristic retrieval) in tmp_path; returns the DB path."""
    monkeypatch.setattr("intake.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    for var in ("INTAKE_CLASSIFIER_MODEL", "INTAKE_EMBEDDING_MODEL",
                "INTAKE_RETRIEVAL_BACKEND", "INTAKE_PROJECT"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    # Wide enough that Rich tables never wrap titles.
    monkeypatch.setenv("COLUMNS", "200")

    (tmp_path / "intake.yaml").write_text("retrieval:\n  backend: heuristic\n")
    db_path = tmp_path / ".intake.db"
    conn = Database(db_path).connect()
    initialize(conn)
    conn.close()
    return db_path


def _response(payload: dict) -> MagicMock:
    response = MagicMock()
    response.choices[0].message.content = json.dumps(payload)
    return response


@pytest.fixture
def scripted_llm():
    """Patch litellm.completion: type detection answers meeting_notes, chunks create_new."""
    answers: dict = {
        "type": {"type": "meeting_notes"},
        "chunk": {
            "action": "create_new",
            "targetRecordId": None,
            "extractedTitle": "Launch beta",
            "extractedDescription": "Launch the beta in March",
            "category": "action",
            "confidence": 0.9,
            "reasoning": "new work",
            "riskLevel": "low",
        },
    }

    def _complete(**kwargs):
        system = kwargs["messages"][0]["content"]
        if "Identify document type" in system:
            return _response(answers["type"])
        if answers.get("chunk_error"):
            raise answers["chunk_error"]
        return _response(answers["chunk"])

    with patch("intake.rag.llm_client.litellm.completion", side_effect=_complete) as mock_c:
        mock_c.answers = answers
        yield mock_c
