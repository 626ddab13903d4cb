"""Suggestion confirmation and rejection.

Lifecycle of a suggestion:

  suggestion ──confirm──▶ terminal status from _CONFIRMATION_RULES
      │
      └────reject───────▶ deleted (no undo)

Confirming a suggestion that still holds its source text materialises an
Artifact (``enrollment_state=pending``) linked to the item in the same commit.
Once the item's confirmed status is stored, the artifact is embedded into the
knowledge base and flipped to ``enrolled`` only once the embedding succeeds,
so a later confirmation can retry and enrolled content is never embedded twice.
Enrollment and item indexing are best-effort: failures are logged, never
raised.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field

from intake.db.models import Artifact, EnrollmentState, Item, ItemStatus, ItemType
from intake.db.repository import Repository
from intake.errors import EnrollmentError, InputError, IntakeError, MaterializationError
from intake.inbox.store import SuggestionStore
from intake.rag.index import EmbeddingIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfirmationRule:
    status: ItemStatus
    meta_status: str | None = None


_DEFAULT_RULE = ConfirmationRule(ItemStatus.NOT_STARTED)

# Terminal state per item type. Must cover every ItemType.
_CONFIRMATION_RULES: dict[ItemType, ConfirmationRule] = {
    ItemType.GENERAL: _DEFAULT_RULE,
    ItemType.PENDING: _DEFAULT_RULE,
    ItemType.CR: ConfirmationRule(ItemStatus.IN_PROGRESS),
    ItemType.DECISION: ConfirmationRule(ItemStatus.NOT_STARTED, meta_status="active"),
    ItemType.ACTION: _DEFAULT_RULE,
    ItemType.RULE: _DEFAULT_RULE,
    ItemType.TODO: _DEFAULT_RULE,
}


def confirmation_rule(item_type: ItemType) -> ConfirmationRule:
    return _CONFIRMATION_RULES[ItemType(item_type)]


@dataclass
class ConfirmSummary:
    """Outcome of a batch confirmation.

    Attributes:
        created_count: Suggestions confirmed.
        failed_count: Suggestions skipped or failed.
        failures: id → reason for every failure.
        id_map: original suggestion id → confirmed record id.
    """

    created_count: int = 0
    failed_count: int = 0
    failures: dict[str, str] = field(default_factory=dict)
    id_map: dict[str, str] = field(default_factory=dict)

    def add_failure(self, item_id: str, reason: str) -> None:
        self.failed_count += 1
        self.failures[item_id] = reason


class ConfirmationOrchestrator:
    """Turn suggestions into confirmed records.

    Args:
        repo: Repository over the workspace database.
        index: Embedding index for knowledge-base enrollment. ``None`` skips
            embedding; artifacts are then marked enrolled directly so the
            keyword backend can search them (``intake reindex`` embeds later).
        store: Suggestion store (defaults to one over *repo*).
    """

    def __init__(
        self,
        repo: Repository,
        index: EmbeddingIndex | None = None,
        store: SuggestionStore | None = None,
    ) -> None:
        self._repo = repo
        self._index = index
        self._store = store or SuggestionStore(repo)

    # ------------------------------------------------------------------
    # Confirm
    # ------------------------------------------------------------------

    def confirm_item(self, item: str | Item) -> Item:
        """Confirm one suggestion and return the confirmed record.

        Raises:
            InputError: The item does not exist or is not a suggestion.
            MaterializationError: Writing the artifact or the item failed.
        """
        current = self._load(item.id if isinstance(item, Item) else item)
        return self._confirm(current, parent_id=current.parent_id)

    def batch_confirm(self, item_ids: Iterable[str]) -> ConfirmSummary:
        """Confirm many suggestions, parents before children.

        A failing item never stops the batch. A child whose parent is in the
        batch but failed is failed too, so no confirmed record ever points at
        a draft.
        """
        summary = ConfirmSummary()
        batch: dict[str, Item] = {}
        for item_id in dict.fromkeys(item_ids):
            try:
                batch[item_id] = self._load(item_id)
            except (InputError, sqlite3.Error) as exc:
                summary.add_failure(item_id, str(exc))

        remap: dict[str, str] = {}
        for item in _hierarchy_order(batch):
            parent_id = item.parent_id
            if parent_id is not None and parent_id in batch:
                if parent_id not in remap:
                    summary.add_failure(item.id, f"parent {parent_id} was not confirmed")
                    continue
                parent_id = remap[parent_id]
            try:
                confirmed = self._confirm(item, parent_id=parent_id)
            except (IntakeError, sqlite3.Error) as exc:
                logger.warning("Confirming %s failed: %s", item.id, exc)
                summary.add_failure(item.id, str(exc))
                continue
            remap[item.id] = confirmed.id
            summary.created_count += 1

        summary.id_map = remap
        return summary

    def confirm_selected(self, item_ids: Iterable[str]) -> ConfirmSummary:
        return self.batch_confirm(item_ids)

    # ------------------------------------------------------------------
    # Reject
    # ------------------------------------------------------------------

    def reject_item(self, item_id: str) -> bool:
        """Hard-delete a suggestion. Missing or non-draft ids are ignored."""
        item = self._repo.get_item(item_id)
        if item is None or not item.is_suggestion:
            return False
        return self._store.delete(item_id)

    def batch_reject(self, item_ids: Iterable[str]) -> int:
        return sum(1 for item_id in dict.fromkeys(item_ids) if self.reject_item(item_id))

    def reject_selected(self, item_ids: Iterable[str]) -> int:
        return self.batch_reject(item_ids)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, item_id: str) -> Item:
        item = self._repo.get_item(item_id)
        if item is None:
            raise InputError(f"Item '{item_id}' not found")
        if not item.is_suggestion:
            raise InputError(f"Item '{item_id}' is not a suggestion (status {item.status.value})")
        return item

    def _confirm(self, item: Item, parent_id: str | None) -> Item:
        artifact_id = self._materialize(item)

        rule = confirmation_rule(item.type)
        meta = dict(item.meta)
        if rule.meta_status is not None:
            meta["status"] = rule.meta_status

        try:
            confirmed = self._repo.update_item(
                item.id,
                status=rule.status,
                meta=meta,
                parent_id=parent_id,
                source_artifact_id=artifact_id,
                pending_artifact=None,
            )
        except sqlite3.Error as exc:
            self._repo.conn.rollback()
            raise MaterializationError(f"updating item {item.id} failed: {exc}") from exc
        if confirmed is None:
            raise MaterializationError(f"item {item.id} disappeared during confirmation")

        # Only confirmed content reaches the knowledge base.
        if artifact_id is not None:
            self._enroll(artifact_id)
        self._index_item(confirmed)
        return confirmed

    def _materialize(self, item: Item) -> str | None:
        """Return the item's artifact id, creating and linking the artifact if needed.

        The new artifact is linked to the item in the same commit, so a retry
        after a later failure reuses it instead of creating a second one.
        """
        if item.source_artifact_id or item.pending_artifact is None:
            return item.source_artifact_id

        payload = item.pending_artifact
        artifact = Artifact(
            id=str(uuid.uuid4()),
            project_id=item.project_id,
            content_type=payload.content_type,
            original_content=payload.content,
            enrollment_state=EnrollmentState.PENDING,
            meta={"source_info": payload.source_info, "is_manual": True},
        )
        try:
            self._repo.add_item_artifact(item.id, artifact)
        except (sqlite3.Error, LookupError) as exc:
            raise MaterializationError(
                f"creating artifact for item {item.id} failed: {exc}"
            ) from exc
        logger.debug("Materialised artifact %s for item %s", artifact.id, item.id)
        return artifact.id

    def _enroll(self, artifact_id: str) -> None:
        try:
            artifact = self._repo.get_artifact(artifact_id)
        except sqlite3.Error as exc:
            self._repo.conn.rollback()
            logger.warning("Loading artifact %s for enrollment failed: %s", artifact_id, exc)
            return
        if artifact is None:
            logger.warning("Artifact %s not found, skipping enrollment", artifact_id)
            return
        if artifact.enrollment_state == EnrollmentState.ENROLLED:
            return

        if artifact.original_content.strip() and self._index is not None:
            try:
                self._index.embed_or_raise(
                    artifact.original_content,
                    artifact.id,
                    "artifact",
                    artifact.project_id,
                    metadata={"title": artifact.title, "content_type": artifact.content_type},
                )
            except EnrollmentError as exc:
                logger.warning("Enrollment of artifact %s failed: %s", artifact.id, exc)
                return

        try:
            self._repo.set_enrollment_state(artifact.id, EnrollmentState.ENROLLED)
        except sqlite3.Error as exc:
            self._repo.conn.rollback()
            logger.warning("Marking artifact %s enrolled failed: %s", artifact.id, exc)

    def _index_item(self, item: Item) -> None:
        if self._index is None:
            return
        text = f"{item.title}\n{item.description}".strip()
        self._index.embed(
            text,
            item.id,
            "item",
            item.project_id,
            metadata={"title": item.title, "type": item.type.value},
        )


def _hierarchy_order(batch: dict[str, Item]) -> list[Item]:
    """Sort by depth of the in-batch parent chain, then ``meta.level``; stable."""
    depths: dict[str, int] = {}

    def depth(item: Item) -> int:
        if item.id in depths:
            return depths[item.id]
        seen = {item.id}
        d = 0
        parent = batch.get(item.parent_id) if item.parent_id else None
        while parent is not None and parent.id not in seen:
            seen.add(parent.id)
            d += 1
            parent = batch.get(parent.parent_id) if parent.parent_id else None
        depths[item.id] = d
        return d

    return sorted(batch.values(), key=lambda i: (depth(i), i.level))
