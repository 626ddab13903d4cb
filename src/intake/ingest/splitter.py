"""Recursive character text splitter.

Strategy:
- Pick the highest-priority separator that occurs in the text (the empty
  separator always matches and means a per-character split).
- Greedily pack the resulting pieces into chunks of at most ``chunk_size``
  characters, counting the separators that join them.
- When a chunk closes, keep a tail of it (whole pieces, at most
  ``chunk_overlap`` characters) as the start of the next chunk.
- Chunks still longer than ``chunk_size`` (a single piece was too big) are
  re-split with the remaining lower-priority separators; when none remain they
  are chopped into exact ``chunk_size`` windows.
"""

from __future__ import annotations

from collections.abc import Sequence

from intake.errors import InputError

DEFAULT_SEPARATORS: tuple[str, ...] = (
    "\n\n", "\n", "。", "！", "？", ". ", "，", "、", " ", "",
)
DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200


class TextSplitter:
    """Split text into ordered, bounded, overlapping chunks.

    Args:
        chunk_size: Maximum chunk length in characters.
        chunk_overlap: Target length of the tail carried into the next chunk.
            Must be smaller than ``chunk_size``.
        separators: Separators in priority order (coarsest first).
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        separators: Sequence[str] = DEFAULT_SEPARATORS,
    ) -> None:
        if chunk_size < 1:
            raise InputError("chunk_size must be >= 1")
        if chunk_overlap < 0:
            raise InputError("chunk_overlap must be >= 0")
        if chunk_overlap >= chunk_size:
            raise InputError(
                f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = list(separators)

    def split(self, text: str) -> list[str]:
        """Return the ordered chunk list for *text* (empty text → [])."""
        if not text:
            return []

        separator = self._pick_separator(text)
        merged = self._merge(_split_on(text, separator), separator)

        result: list[str] = []
        for chunk in merged:
            if len(chunk) <= self.chunk_size:
                result.append(chunk)
                continue
            remaining = self._separators_after(separator)
            if remaining:
                sub = TextSplitter(self.chunk_size, self.chunk_overlap, remaining)
                result.extend(sub.split(chunk))
            else:
                result.extend(
                    chunk[i : i + self.chunk_size]
                    for i in range(0, len(chunk), self.chunk_size)
                )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _pick_separator(self, text: str) -> str:
        for sep in self.separators:
            if sep in text:
                return sep
        return ""

    def _separators_after(self, separator: str) -> list[str]:
        if separator not in self.separators:
            return []
        return self.separators[self.separators.index(separator) + 1 :]

    def _merge(self, pieces: list[str], separator: str) -> list[str]:
        sep_len = len(separator)
        chunks: list[str] = []
        current: list[str] = []
        length = 0

        for piece in pieces:
            joiner = sep_len if current else 0
            if current and length + len(piece) + joiner > self.chunk_size:
                chunks.append(separator.join(current))
                # Drop pieces from the front until the tail fits the overlap.
                while length > self.chunk_overlap and current:
                    removed = current.pop(0)
                    length -= len(removed) + (sep_len if current else 0)
            current.append(piece)
            length += len(piece) + (sep_len if len(current) > 1 else 0)

        if current:
            chunks.append(separator.join(current))
        return chunks


def _split_on(text: str, separator: str) -> list[str]:
    if separator == "":
        return list(text)
    return text.split(separator)


def split_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    separators: Sequence[str] = DEFAULT_SEPARATORS,
) -> list[str]:
    """Functional form of ``TextSplitter(...).split(text)``."""
    return TextSplitter(chunk_size, chunk_overlap, separators).split(text)
