"""intake database layer."""

from intake.db.connection import Database
from intake.db.migrations import MIGRATIONS, run_migrations
from intake.db.schema import initialize
from intake.db.vectors import ensure_vec_table, model_to_slug, vec_table_name

__all__ = [
    "Database",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "model_to_slug",
    "vec_table_name",
]
