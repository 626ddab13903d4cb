"""intake inbox: suggestion storage and the confirm / reject lifecycle."""

from intake.inbox.confirmation import (
    ConfirmationOrchestrator,
    ConfirmSummary,
    confirmation_rule,
)
from intake.inbox.store import SuggestionStore

__all__ = [
    "ConfirmationOrchestrator",
    "ConfirmSummary",
    "SuggestionStore",
    "confirmation_rule",
]
