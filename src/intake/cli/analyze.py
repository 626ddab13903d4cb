"""intake analyze: turn a document into inbox suggestions.

  intake analyze notes.md --project acme          analyse + draft suggestions
  cat notes.md | intake analyze - --project acme   read from stdin
  intake analyze --artifact <id> --project acme    re-analyse a stored artifact
  intake analyze notes.md --dry-run               show the mapping only
"""

from __future__ import annotations

import sqlite3
import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from intake.analysis.mapping import DocumentType, MappingAction
from intake.analysis.pipeline import AnalysisResult, DocumentAnalyzer
from intake.cli.errors import (
    err_analysis_failed,
    err_config,
    err_empty_document,
    err_input,
    err_no_api_key,
    err_no_db,
    warn_degraded_chunks,
)
from intake.config import ConfigError, load_config
from intake.db.connection import Database
from intake.db.repository import Repository
from intake.db.schema import initialize
from intake.errors import AnalysisError, InputError
from intake.rag.llm_client import provider_of, validate_api_key

console = Console()

_DEFAULT_DB = Path(".intake.db")

_ACTION_STYLE = {
    MappingAction.CREATE_NEW: "green",
    MappingAction.MAP_EXISTING: "cyan",
    MappingAction.APPEND_SPEC: "magenta",
    MappingAction.IGNORE: "dim",
}


def analyze_cmd(
    source: Annotated[
        str | None,
        typer.Argument(help="Text file to analyse, or '-' for stdin."),
    ] = None,
    project: Annotated[
        str,
        typer.Option("--project", "-p", envvar="INTAKE_PROJECT", help="Project id."),
    ] = "default",
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .intake.db."),
    ] = _DEFAULT_DB,
    doc_type: Annotated[
        str | None,
        typer.Option("--type", help="Document type (skips detection), e.g. meeting_notes."),
    ] = None,
    artifact: Annotated[
        str | None,
        typer.Option("--artifact", help="Analyse an already stored artifact."),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show the analysis without creating suggestions."),
    ] = False,
) -> None:
    """Analyse a document and draft suggestions for the inbox."""
    try:
        cfg = load_config(db.resolve().parent)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    if not db.exists():
        console.print(err_no_db(str(db)))
        raise typer.Exit(1)

    content = _read_source(source) if source is not None else ""
    if not content.strip() and artifact is None:
        console.print(err_empty_document(source or "(no source)"))
        raise typer.Exit(1)

    try:
        validate_api_key(cfg.classifier.model)
    except EnvironmentError:
        console.print(err_no_api_key(provider_of(cfg.classifier.model)))
        raise typer.Exit(1)

    conn = _open_db(db)
    try:
        repo = Repository(conn)
        analyzer = DocumentAnalyzer.from_config(cfg, repo)
        try:
            result = analyzer.analyze(
                content,
                project,
                existing_artifact_id=artifact,
                document_type=DocumentType.parse(doc_type) if doc_type else None,
            )
        except InputError as exc:
            console.print(err_input(str(exc)))
            raise typer.Exit(1)
        except AnalysisError as exc:
            console.print(err_analysis_failed(str(exc)))
            raise typer.Exit(1)

        _print_result(result)
        if result.summary.degraded_items:
            console.print(warn_degraded_chunks(result.summary.degraded_items))

        if dry_run:
            console.print("[dim]Dry run: no suggestions created.[/]")
            return

        items = analyzer.create_suggestions(result, project)
        console.print(
            f"\n[bold green]✓[/] {len(items)} suggestion(s) added to the inbox.\n"
            f"  Review:  intake inbox list --project {project}"
        )
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _read_source(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    path = Path(source)
    if not path.is_file():
        console.print(err_input(f"File not found: '{source}'"))
        raise typer.Exit(1)
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        console.print(err_input(f"'{source}' is not UTF-8 text."))
        raise typer.Exit(1)


def _open_db(db: Path) -> sqlite3.Connection:
    conn = Database(db).connect()
    initialize(conn)
    return conn


def _print_result(result: AnalysisResult) -> None:
    s = result.summary
    console.print(
        f"[bold]Document type:[/] {result.document_type.value}  |  "
        f"Chunks: [bold]{s.total_items}[/]  |  "
        f"New: {s.new_items}  Mapped: {s.mapped_items}  "
        f"Appended: {s.appended_specs}  Ignored: {s.ignored_items}  "
        f"High risk: [red]{s.critical_risks}[/]"
    )
    if not result.chunks:
        console.print("[dim]No chunks long enough to classify.[/]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Section", no_wrap=True)
    table.add_column("Action")
    table.add_column("Conf.", justify="right")
    table.add_column("Risk")
    table.add_column("Title")
    for chunk in result.chunks:
        m = chunk.mapping
        style = _ACTION_STYLE[m.action]
        table.add_row(
            chunk.source_location,
            f"[{style}]{m.action.value}[/]" + (" [yellow](degraded)[/]" if m.degraded else ""),
            f"{m.confidence:.2f}",
            m.risk_level.value,
            m.extracted_title,
        )
    console.print(table)
