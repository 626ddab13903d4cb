"""intake rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from intake.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from intake.rag.llm_client import api_key_env


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = api_key_env(provider) or f"{provider.upper()}_API_KEY"
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".intake.db") -> str:
    """No .intake.db found."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  intake init"
    )


def err_config(message: str) -> str:
    """intake.yaml or ~/.intake/config.yaml is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix intake.yaml (or ~/.intake/config.yaml) and retry."
    )


def err_empty_document(source: str) -> str:
    return (
        f"[red]Error:[/] Nothing to analyse in '{source}'.\n"
        "  Pass a UTF-8 text file with content, or '-' to read from stdin."
    )


def err_input(message: str) -> str:
    return f"[red]Error:[/] {message}"


def err_analysis_failed(reason: str) -> str:
    """The whole analysis failed; nothing was stored."""
    return (
        f"[red]Error:[/] Analysis failed: {reason}\n"
        "  No suggestions were created. Check the classifier model and API key, then retry.\n"
        "  Run with  intake --verbose analyze ...  for details."
    )


def err_no_selection(command: str) -> str:
    return (
        "[red]Error:[/] No items selected.\n"
        f"  Pass item ids, or use  intake inbox {command} --all"
    )


def err_vector_backend_required() -> str:
    return (
        "[red]Error:[/] reindex needs the vector retrieval backend.\n"
        "  Set  retrieval.backend: vector  in intake.yaml (or unset INTAKE_RETRIEVAL_BACKEND)."
    )


def warn_degraded_chunks(count: int) -> str:
    """Some chunks fell back to create_new because classification failed."""
    return (
        f"[yellow]⚠[/] {count} chunk(s) could not be classified and were marked create_new.\n"
        "  Review them carefully before confirming."
    )


def warn_failed_confirmations(failures: dict[str, str]) -> str:
    lines = "\n".join(f"    {item_id}: {reason}" for item_id, reason in failures.items())
    return f"[yellow]⚠[/] {len(failures)} item(s) were not confirmed:\n{lines}"


def warn_foreign_items(item_ids: list[str], project: str) -> str:
    return (
        f"[yellow]⚠[/] Skipped {len(item_ids)} item(s) outside project '{project}': "
        f"{', '.join(item_ids)}"
    )
