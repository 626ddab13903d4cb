"""intake search / reindex: query and rebuild the knowledge base."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from intake.cli.errors import (
    err_config,
    err_input,
    err_no_api_key,
    err_no_db,
    err_vector_backend_required,
)
from intake.config import ConfigError, IntakeConfig, load_config
from intake.db.connection import Database
from intake.db.models import EnrollmentState
from intake.db.repository import Repository
from intake.db.schema import initialize
from intake.inbox.store import CONFIRMED, SuggestionStore
from intake.rag.index import EmbeddingIndex, Match
from intake.rag.llm_client import provider_of, validate_api_key
from intake.rag.retriever import SOURCE_TYPES, build_retriever, query_knowledge_base

console = Console()

_DEFAULT_DB = Path(".intake.db")
_SNIPPET_CHARS = 120


def search_cmd(
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    project: Annotated[
        str,
        typer.Option("--project", "-p", envvar="INTAKE_PROJECT", help="Project id."),
    ] = "default",
    db: Annotated[Path, typer.Option("--db", help="Path to .intake.db.")] = _DEFAULT_DB,
    source_type: Annotated[
        str,
        typer.Option("--in", help="Search 'artifact' (knowledge base) or 'item' records."),
    ] = "artifact",
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", help="Maximum results."),
    ] = None,
) -> None:
    """Search the project's knowledge base or confirmed records."""
    if source_type not in SOURCE_TYPES:
        console.print(err_input(f"--in must be one of {', '.join(SOURCE_TYPES)}."))
        raise typer.Exit(1)
    cfg = _load_cfg(db)
    conn = _open_existing_db(db)
    try:
        repo = Repository(conn)
        retriever = build_retriever(cfg, repo)
        if source_type == "artifact":
            matches = query_knowledge_base(
                retriever,
                query,
                project,
                top_k=top_k or cfg.retrieval.knowledge_top_k,
                threshold=cfg.retrieval.knowledge_threshold,
            )
        else:
            matches = retriever.search(
                query,
                project,
                source_type="item",
                top_k=top_k or cfg.retrieval.candidate_top_k,
                threshold=cfg.retrieval.candidate_threshold,
            )
    finally:
        conn.close()

    if not matches:
        console.print(f"[dim]No matches for '{query}'.[/]")
        return
    console.print(_matches_table(matches))


def reindex_cmd(
    project: Annotated[
        str,
        typer.Option("--project", "-p", envvar="INTAKE_PROJECT", help="Project id."),
    ] = "default",
    db: Annotated[Path, typer.Option("--db", help="Path to .intake.db.")] = _DEFAULT_DB,
) -> None:
    """Re-embed the knowledge base and confirmed records of a project."""
    cfg = _load_cfg(db)
    if cfg.retrieval.backend != "vector":
        console.print(err_vector_backend_required())
        raise typer.Exit(1)
    try:
        validate_api_key(cfg.embedding.model)
    except EnvironmentError:
        console.print(err_no_api_key(provider_of(cfg.embedding.model)))
        raise typer.Exit(1)

    conn = _open_existing_db(db)
    embedded = failed = 0
    try:
        repo = Repository(conn)
        index = EmbeddingIndex(repo, cfg.embedding.model, cfg.embedding.dimensions)
        confirmed = SuggestionStore(repo).list(project, CONFIRMED)
        referenced = {i.source_artifact_id for i in confirmed if i.source_artifact_id}

        for artifact in repo.list_artifacts(project):
            if not artifact.original_content.strip():
                continue
            # A pending artifact no confirmed item points at stays out of the knowledge base.
            if (
                artifact.enrollment_state == EnrollmentState.PENDING
                and artifact.id not in referenced
            ):
                continue
            ok = index.embed(
                artifact.original_content,
                artifact.id,
                "artifact",
                project,
                metadata={"title": artifact.title, "content_type": artifact.content_type},
            )
            if not ok:
                failed += 1
                continue
            embedded += 1
            if artifact.enrollment_state == EnrollmentState.PENDING:
                repo.set_enrollment_state(artifact.id, EnrollmentState.ENROLLED)

        for item in confirmed:
            ok = index.embed(
                f"{item.title}\n{item.description}".strip(),
                item.id,
                "item",
                project,
                metadata={"title": item.title, "type": item.type.value},
            )
            if ok:
                embedded += 1
            else:
                failed += 1
    finally:
        conn.close()

    console.print(f"[bold green]✓[/] Embedded {embedded}  |  Failed {failed}")
    if failed:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg(db: Path) -> IntakeConfig:
    try:
        return load_config(db.resolve().parent)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)


def _open_existing_db(db: Path) -> sqlite3.Connection:
    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)
    conn = Database(db).connect()
    initialize(conn)
    return conn


def _matches_table(matches: list[Match]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Score", justify="right")
    table.add_column("ID", no_wrap=True)
    table.add_column("Title")
    table.add_column("Snippet")
    for m in matches:
        snippet = " ".join(m.content.split())
        if len(snippet) > _SNIPPET_CHARS:
            snippet = snippet[: _SNIPPET_CHARS - 1] + "…"
        table.add_row(
            f"{m.similarity:.2f}",
            m.id,
            str(m.metadata.get("title") or m.metadata.get("file_name") or ""),
            snippet,
        )
    return table
