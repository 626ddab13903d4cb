"""Exception taxonomy for the intake pipeline.

Chunk-level and item-level failures are isolated by the pipeline and reported
as flags or counts; only InputError and AnalysisError reach the caller of an
analysis, and only InputError / MaterializationError reach the caller of a
single confirmation.
"""

from __future__ import annotations


class IntakeError(Exception):
    """Base class for all intake errors."""


class InputError(IntakeError, ValueError):
    """Empty or invalid input, rejected before any processing starts."""


class ClassificationDegraded(IntakeError):
    """The classifier failed or answered malformed JSON for one chunk.

    Raised inside MappingEngine only; it never escapes ``classify()``.
    """


class RetrievalUnavailable(IntakeError):
    """The vector backend (embedding call or vec table) cannot serve a query."""


class MaterializationError(IntakeError):
    """An artifact or item write failed while confirming a suggestion."""


class EnrollmentError(IntakeError):
    """Embedding an artifact into the knowledge base failed."""


class AnalysisError(IntakeError):
    """The whole document could not be analysed (e.g. classifier unreachable)."""
