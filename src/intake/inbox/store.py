"""Draft work items ("suggestions") awaiting confirmation."""

from __future__ import annotations

import uuid

from intake.db.models import Item, ItemStatus, ItemType, PendingArtifact
from intake.db.repository import Repository
from intake.errors import InputError

# list() status filters
SUGGESTION = "suggestion"
CONFIRMED = "confirmed"

_NOT_CONFIRMED = (ItemStatus.SUGGESTION, ItemStatus.REJECTED)


class SuggestionStore:
    """Keyed item storage scoped by project.

    Timestamps are stamped by the repository in UTC ISO-8601; every update
    refreshes ``updated_at``. Deletion is a hard delete.
    """

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def create(
        self,
        project_id: str,
        type: ItemType,
        title: str,
        description: str = "",
        *,
        parent_id: str | None = None,
        meta: dict | None = None,
        pending_artifact: PendingArtifact | None = None,
        source_artifact_id: str | None = None,
        status: ItemStatus = ItemStatus.SUGGESTION,
    ) -> Item:
        """Insert a new item (a draft unless *status* says otherwise).

        Raises:
            InputError: Empty project id or title, or an unknown type.
        """
        if not project_id.strip():
            raise InputError("project_id must not be empty")
        if not title.strip():
            raise InputError("title must not be empty")
        try:
            item_type = ItemType(type)
        except ValueError:
            raise InputError(f"Unknown item type '{type}'") from None

        item = Item(
            id=str(uuid.uuid4()),
            project_id=project_id,
            type=item_type,
            title=title.strip(),
            description=description,
            status=ItemStatus(status),
            parent_id=parent_id,
            source_artifact_id=source_artifact_id,
            meta=dict(meta or {}),
            pending_artifact=pending_artifact,
        )
        return self._repo.add_item(item)

    def get(self, item_id: str) -> Item | None:
        return self._repo.get_item(item_id)

    def list(self, project_id: str, status: str | None = None) -> list[Item]:
        """List a project's items, oldest first.

        Args:
            status: ``None`` for everything, ``"suggestion"`` for drafts, or
                ``"confirmed"`` for every item that is neither a draft nor
                rejected.
        """
        if status is None:
            return self._repo.list_items(project_id)
        if status == SUGGESTION:
            return self._repo.list_items(project_id, statuses=[ItemStatus.SUGGESTION])
        if status == CONFIRMED:
            return self._repo.list_items(project_id, exclude_statuses=_NOT_CONFIRMED)
        raise InputError(f"status filter must be 'suggestion' or 'confirmed', got '{status}'")

    def update(self, item_id: str, **fields: object) -> Item | None:
        """Update fields and refresh ``updated_at``. None if the item is gone."""
        try:
            return self._repo.update_item(item_id, **fields)
        except ValueError as exc:
            raise InputError(str(exc)) from exc

    def delete(self, item_id: str) -> bool:
        return self._repo.delete_item(item_id)
