"""Domain models for the intake database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum


class ItemType(str, Enum):
    GENERAL = "general"
    PENDING = "pending"
    CR = "cr"
    DECISION = "decision"
    ACTION = "action"
    RULE = "rule"
    TODO = "todo"


class ItemStatus(str, Enum):
    SUGGESTION = "suggestion"
    REJECTED = "rejected"
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    AWAITING_RESPONSE = "awaiting_response"
    COMPLETED = "completed"


class EnrollmentState(str, Enum):
    """Whether an artifact's content has been embedded into the knowledge base."""

    PENDING = "pending"
    ENROLLED = "enrolled"


@dataclass
class PendingArtifact:
    """Raw content + provenance held on a suggestion until it is confirmed."""

    content: str
    content_type: str = "text"
    source_info: str = ""

    def to_json(self) -> str:
        return json.dumps(
            {
                "content": self.content,
                "content_type": self.content_type,
                "source_info": self.source_info,
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> PendingArtifact:
        data = json.loads(raw)
        return cls(
            content=data.get("content", ""),
            content_type=data.get("content_type", "text"),
            source_info=data.get("source_info", ""),
        )


@dataclass
class Artifact:
    id: str
    project_id: str
    content_type: str = "text"
    original_content: str = ""
    enrollment_state: EnrollmentState = EnrollmentState.PENDING
    meta: dict = field(default_factory=dict)
    created_at: str | None = None

    @property
    def title(self) -> str:
        return self.meta.get("file_name") or self.meta.get("source_info") or self.id


@dataclass
class Item:
    """A work item. Status ``suggestion`` marks a draft awaiting confirmation."""

    id: str
    project_id: str
    type: ItemType
    title: str
    description: str = ""
    status: ItemStatus = ItemStatus.SUGGESTION
    parent_id: str | None = None
    source_artifact_id: str | None = None
    meta: dict = field(default_factory=dict)
    pending_artifact: PendingArtifact | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_suggestion(self) -> bool:
        return self.status == ItemStatus.SUGGESTION

    @property
    def level(self) -> int:
        try:
            return int(self.meta.get("level", 1))
        except (TypeError, ValueError):
            return 1


@dataclass
class EmbeddingRecord:
    source_id: str
    source_type: str  # item | artifact
    project_id: str
    content: str
    metadata: str = field(default_factory=lambda: "{}")
    created_at: str | None = None
    rowid: int | None = None  # shared with the vec table row

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.metadata)
