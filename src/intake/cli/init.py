"""intake init: create a workspace.

Creates:
  .intake.db              : empty database with schema
  intake.yaml             : project config with commented defaults
  ~/.intake/config.yaml   : global model config (created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from intake.config import ensure_global_config, write_project_config
from intake.db.connection import Database
from intake.db.schema import initialize

console = Console()

_DB_NAME = ".intake.db"
_GITIGNORE_ENTRIES = [_DB_NAME, f"{_DB_NAME}-wal", f"{_DB_NAME}-shm"]


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
    global_config: Annotated[
        Path | None,
        typer.Option("--global-config", hidden=True, help="Override global config path (testing)."),
    ] = None,
) -> None:
    """Initialize an intake workspace (database + intake.yaml)."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)

    db_path = project_dir / _DB_NAME
    existed = db_path.exists()

    conn = Database(db_path).connect()
    try:
        initialize(conn)
    finally:
        conn.close()
    console.print(f"  [green]✓[/] {_DB_NAME}" + (" (schema up to date)" if existed else ""))

    cfg_path = write_project_config(project_dir)
    console.print(f"  [green]✓[/] {cfg_path.name}")

    _update_gitignore(project_dir)

    global_path = ensure_global_config(global_config)
    console.print(f"  [green]✓[/] {global_path} (global config)")

    console.print("\n[bold green]✓ Workspace initialized.[/]")
    console.print("\nNext steps:")
    console.print("  1. export OPENAI_API_KEY=sk-...             (classifier + embeddings)")
    console.print("  2. intake analyze notes.md --project <id>    (draft suggestions)")
    console.print("  3. intake inbox list --project <id>          (review)")
    console.print("  4. intake inbox confirm <item-id> ...        (confirm)")


def _update_gitignore(project_dir: Path) -> None:
    gitignore = project_dir / ".gitignore"
    existing = gitignore.read_text(encoding="utf-8").splitlines() if gitignore.exists() else []
    missing = [e for e in _GITIGNORE_ENTRIES if e not in existing]
    if not missing:
        return
    lines = existing + missing
    gitignore.write_text("\n".join(lines) + "\n", encoding="utf-8")
    console.print("  [green]✓[/] .gitignore")
