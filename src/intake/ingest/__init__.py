"""intake ingest: recursive text splitting."""

from intake.ingest.splitter import DEFAULT_SEPARATORS, TextSplitter, split_text

__all__ = [
    "DEFAULT_SEPARATORS",
    "TextSplitter",
    "split_text",
]
