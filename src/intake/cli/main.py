"""intake CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from intake.cli.analyze import analyze_cmd
from intake.cli.inbox import inbox_app
from intake.cli.init import init_cmd
from intake.cli.search import reindex_cmd, search_cmd


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"intake {_installed_version()}")
        raise typer.Exit()


def _installed_version() -> str:
    try:
        return importlib.metadata.version("intake")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _setup_logging(verbose: bool) -> None:
    """Route library logging through Rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
        force=True,
    )
    if not verbose:
        # LiteLLM logs every request at INFO.
        logging.getLogger("LiteLLM").setLevel(logging.WARNING)


app = typer.Typer(
    name="intake",
    help=(
        "intake: document intake for project work items.\n\n"
        "  intake analyze   Split a document, match it against existing items, draft suggestions.\n"
        "  intake inbox     Review, confirm or reject suggestions."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """intake: document intake for project work items."""
    _setup_logging(verbose)


app.command("init")(init_cmd)
app.command("analyze")(analyze_cmd)
app.command("search")(search_cmd)
app.command("reindex")(reindex_cmd)
app.add_typer(inbox_app, name="inbox")


@app.command("version")
def version_cmd() -> None:
    """Show the installed intake version."""
    typer.echo(f"intake {_installed_version()}")


if __name__ == "__main__":
    app()
