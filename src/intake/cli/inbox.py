"""intake inbox list|confirm|reject: review drafted suggestions."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from intake.cli.errors import (
    err_config,
    err_no_db,
    err_no_selection,
    warn_failed_confirmations,
    warn_foreign_items,
)
from intake.config import ConfigError, IntakeConfig, load_config
from intake.db.connection import Database
from intake.db.models import Item
from intake.db.repository import Repository
from intake.db.schema import initialize
from intake.inbox.confirmation import ConfirmationOrchestrator
from intake.inbox.store import CONFIRMED, SUGGESTION, SuggestionStore
from intake.rag.index import EmbeddingIndex

console = Console()

_DEFAULT_DB = Path(".intake.db")

inbox_app = typer.Typer(
    name="inbox",
    help="Review, confirm or reject suggestions.",
    no_args_is_help=True,
)

ProjectOpt = Annotated[
    str,
    typer.Option("--project", "-p", envvar="INTAKE_PROJECT", help="Project id."),
]
DbOpt = Annotated[Path, typer.Option("--db", help="Path to .intake.db.")]


@inbox_app.command("list")
def list_cmd(
    project: ProjectOpt = "default",
    db: DbOpt = _DEFAULT_DB,
    confirmed: Annotated[
        bool,
        typer.Option("--confirmed", help="List confirmed records instead of suggestions."),
    ] = False,
) -> None:
    """List suggestions (or confirmed records) for a project."""
    conn = _open_existing_db(db)
    try:
        items = SuggestionStore(Repository(conn)).list(
            project, CONFIRMED if confirmed else SUGGESTION
        )
    finally:
        conn.close()

    if not items:
        what = "confirmed records" if confirmed else "suggestions"
        console.print(f"[dim]No {what} in project '{project}'.[/]")
        return
    console.print(_items_table(items))


@inbox_app.command("confirm")
def confirm_cmd(
    item_ids: Annotated[
        list[str] | None,
        typer.Argument(help="Suggestion ids to confirm."),
    ] = None,
    project: ProjectOpt = "default",
    db: DbOpt = _DEFAULT_DB,
    all_: Annotated[
        bool,
        typer.Option("--all", help="Confirm every suggestion in the project."),
    ] = False,
) -> None:
    """Confirm suggestions (parents before children)."""
    cfg = _load_cfg(db)
    conn = _open_existing_db(db)
    try:
        repo = Repository(conn)
        ids = _selection(repo, project, item_ids, all_, "confirm")
        index = (
            EmbeddingIndex(repo, cfg.embedding.model, cfg.embedding.dimensions)
            if cfg.retrieval.backend == "vector"
            else None
        )
        summary = ConfirmationOrchestrator(repo, index).confirm_selected(ids)
    finally:
        conn.close()

    console.print(
        f"[bold green]✓[/] Confirmed {summary.created_count}  |  "
        f"Failed {summary.failed_count}"
    )
    if summary.failures:
        console.print(warn_failed_confirmations(summary.failures))
    if summary.failed_count and not summary.created_count:
        raise typer.Exit(1)


@inbox_app.command("reject")
def reject_cmd(
    item_ids: Annotated[
        list[str] | None,
        typer.Argument(help="Suggestion ids to reject (deleted, no undo)."),
    ] = None,
    project: ProjectOpt = "default",
    db: DbOpt = _DEFAULT_DB,
    all_: Annotated[
        bool,
        typer.Option("--all", help="Reject every suggestion in the project."),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Skip the confirmation prompt for --all."),
    ] = False,
) -> None:
    """Reject (delete) suggestions."""
    conn = _open_existing_db(db)
    try:
        repo = Repository(conn)
        ids = _selection(repo, project, item_ids, all_, "reject")
        if all_ and not yes:
            typer.confirm(f"Delete {len(ids)} suggestion(s)?", abort=True)
        removed = ConfirmationOrchestrator(repo).reject_selected(ids)
    finally:
        conn.close()
    console.print(f"[bold green]✓[/] Rejected {removed} suggestion(s).")


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


def _selection(
    repo: Repository, project: str, item_ids: list[str] | None, all_: bool, command: str
) -> list[str]:
    """Resolve the ids to act on, dropping explicit ids from other projects.

    Unknown ids are kept so the orchestrator reports them as failures.
    """
    ids: list[str] = []
    foreign: list[str] = []
    for item_id in item_ids or []:
        item = repo.get_item(item_id)
        if item is not None and item.project_id != project:
            foreign.append(item_id)
        else:
            ids.append(item_id)
    if foreign:
        console.print(warn_foreign_items(foreign, project))
    if all_:
        ids.extend(i.id for i in SuggestionStore(repo).list(project, SUGGESTION))
    if not ids:
        console.print(err_no_selection(command))
        raise typer.Exit(1)
    return ids


def _items_table(items: list[Item]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", no_wrap=True)
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Title")
    table.add_column("Action")
    table.add_column("Parent", no_wrap=True)
    for item in items:
        action = item.meta.get("mapping_action", "")
        confidence = item.meta.get("confidence")
        if action and confidence is not None:
            action = f"{action} ({float(confidence):.2f})"
        table.add_row(
            item.id,
            item.type.value,
            item.status.value,
            item.title,
            action,
            item.parent_id or "",
        )
    return table
