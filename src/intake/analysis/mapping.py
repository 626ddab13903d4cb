"""Chunk classification: map a chunk of text onto the project's work items.

The classifier itself is a black box (an LLM behind LiteLLM). MappingEngine
owns everything around it:

  1. Parse     action / confidence / extractedTitle must be well-formed,
               otherwise the chunk is degraded.
  2. Verify    a target id not among the candidates is discarded and the
               action becomes create_new; map_existing / append_spec with no
               target also become create_new.
  3. Risk      classifier value if valid, else low (create_new, ignore) or
               medium (map_existing, append_spec).
  4. Floor     confidence below the floor forces create_new.

Any classifier exception or malformed answer yields a degraded result
(create_new, confidence 0, risk low) instead of failing the document.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from intake.analysis.candidates import Candidate
from intake.db.models import ItemType
from intake.errors import ClassificationDegraded
from intake.rag import llm_client

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_FLOOR = 0.5
DEGRADED_REASONING = "classification unavailable"

_DESCRIPTION_PREVIEW = 200
_TYPE_DETECTION_CHARS = 1000
_FALLBACK_TITLE_CHARS = 80


class MappingAction(str, Enum):
    CREATE_NEW = "create_new"
    MAP_EXISTING = "map_existing"
    APPEND_SPEC = "append_spec"
    IGNORE = "ignore"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DocumentType(str, Enum):
    MEETING_NOTES = "meeting_notes"
    REQUIREMENTS = "requirements"
    CONTRACT = "contract"
    TECHNICAL = "technical"
    COMMUNICATION = "communication"
    DESIGN = "design"
    GENERAL = "general"

    @classmethod
    def parse(cls, value: object) -> DocumentType:
        """Normalise a free-form tag; anything unknown is ``general``."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.GENERAL


_TARGETED_ACTIONS = (MappingAction.MAP_EXISTING, MappingAction.APPEND_SPEC)


@dataclass(frozen=True)
class MappingResult:
    action: MappingAction
    confidence: float
    risk_level: RiskLevel
    category: ItemType
    extracted_title: str
    extracted_description: str
    target_record_id: str | None = None
    reasoning: str = ""
    degraded: bool = False


@dataclass(frozen=True)
class ClassificationRequest:
    """What the classifier sees for one chunk."""

    chunk_text: str
    document_type: DocumentType
    candidates: tuple[dict, ...] = field(default_factory=tuple)

    @classmethod
    def build(
        cls,
        chunk_text: str,
        candidates: Sequence[Candidate],
        document_type: DocumentType,
    ) -> ClassificationRequest:
        return cls(
            chunk_text=chunk_text,
            document_type=document_type,
            candidates=tuple(
                {
                    "id": c.id,
                    "title": c.title,
                    "description": (c.description or "")[:_DESCRIPTION_PREVIEW],
                }
                for c in candidates
            ),
        )


class Classifier(Protocol):
    """Black-box classifier. Both calls may raise; callers degrade."""

    def classify(self, request: ClassificationRequest) -> dict[str, Any]: ...

    def detect_type(self, excerpt: str) -> str: ...


# ---------------------------------------------------------------------------
# LLM classifier
# ---------------------------------------------------------------------------

_CLASSIFY_SYSTEM = "You are a project management assistant. Output valid JSON only."

_CLASSIFY_PROMPT = """\
Document type: {document_type}

Segment of document:
\"\"\"{chunk_text}\"\"\"

Existing records (candidate matches):
{candidates}

Decide whether the segment maps to an existing record, adds detail to one,
describes a new record, or carries nothing actionable.

Output JSON:
{{
  "action": "map_existing" | "create_new" | "append_spec" | "ignore",
  "targetRecordId": "<candidate id>" | null,
  "extractedTitle": "Brief title",
  "extractedDescription": "Detail content",
  "category": "action" | "decision" | "todo" | "rule" | "cr",
  "confidence": 0.0-1.0,
  "reasoning": "Why",
  "riskLevel": "high" | "medium" | "low"
}}"""

_DETECT_SYSTEM = (
    "Identify document type: meeting_notes, requirements, contract, technical, "
    'communication, design, or general. Return JSON: {"type": "..."}'
)

CompleteFn = Callable[..., str]


class LLMClassifier:
    """Classifier backed by a LiteLLM chat completion in JSON mode.

    Args:
        model: LiteLLM model string.
        timeout: Per-call timeout in seconds.
        num_retries: LiteLLM retries per call (0 = single attempt).
        complete_fn: Override for ``llm_client.complete`` (tests).
    """

    def __init__(
        self,
        model: str = "openai/gpt-4o-mini",
        timeout: float = 30.0,
        num_retries: int = 0,
        complete_fn: CompleteFn | None = None,
    ) -> None:
        self.model = model
        self.timeout = timeout
        self.num_retries = num_retries
        self._complete = complete_fn or llm_client.complete

    def classify(self, request: ClassificationRequest) -> dict[str, Any]:
        prompt = _CLASSIFY_PROMPT.format(
            document_type=request.document_type.value,
            chunk_text=request.chunk_text,
            candidates=json.dumps(list(request.candidates), ensure_ascii=False),
        )
        return self._ask(_CLASSIFY_SYSTEM, prompt, temperature=0.1)

    def detect_type(self, excerpt: str) -> str:
        data = self._ask(_DETECT_SYSTEM, excerpt, temperature=0.0, max_tokens=50)
        return str(data.get("type") or DocumentType.GENERAL.value)

    def _ask(
        self, system: str, user: str, temperature: float, max_tokens: int = 1024
    ) -> dict[str, Any]:
        raw = self._complete(
            self.model,
            [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
            timeout=self.timeout,
            num_retries=self.num_retries,
            json_mode=True,
        )
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ClassificationDegraded(f"classifier returned invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ClassificationDegraded("classifier returned a non-object JSON value")
        return data


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass
class _Parsed:
    action: MappingAction
    confidence: float
    risk_level: RiskLevel | None
    category: ItemType
    title: str
    description: str
    target: str | None
    reasoning: str


class MappingEngine:
    """Apply the mapping rules around a :class:`Classifier`.

    Args:
        classifier: The black-box classifier.
        confidence_floor: Results below this confidence become create_new.
    """

    def __init__(
        self, classifier: Classifier, confidence_floor: float = DEFAULT_CONFIDENCE_FLOOR
    ) -> None:
        if not 0.0 <= confidence_floor <= 1.0:
            raise ValueError(f"confidence_floor must be in [0, 1], got {confidence_floor}")
        self._classifier = classifier
        self.confidence_floor = confidence_floor

    def classify(
        self,
        chunk_text: str,
        candidates: Sequence[Candidate],
        document_type: DocumentType = DocumentType.GENERAL,
    ) -> MappingResult:
        """Classify one chunk. Never raises for classifier failures."""
        request = ClassificationRequest.build(chunk_text, candidates, document_type)
        try:
            parsed = _parse(self._classifier.classify(request), chunk_text)
        except Exception as exc:  # any classifier failure degrades the chunk
            logger.warning("Classification degraded: %s", exc)
            return degraded_result(chunk_text)
        return self._apply_rules(parsed, candidates)

    def _apply_rules(self, parsed: _Parsed, candidates: Sequence[Candidate]) -> MappingResult:
        action = parsed.action
        target = parsed.target

        if target is not None and target not in {c.id for c in candidates}:
            logger.debug("Discarding unverified target %s", target)
            target = None
            action = MappingAction.CREATE_NEW
        if action in _TARGETED_ACTIONS and target is None:
            action = MappingAction.CREATE_NEW
        if action not in _TARGETED_ACTIONS:
            target = None

        risk = parsed.risk_level or (
            RiskLevel.MEDIUM if action in _TARGETED_ACTIONS else RiskLevel.LOW
        )

        if parsed.confidence < self.confidence_floor:
            action = MappingAction.CREATE_NEW
            target = None

        return MappingResult(
            action=action,
            confidence=parsed.confidence,
            risk_level=risk,
            category=parsed.category,
            extracted_title=parsed.title,
            extracted_description=parsed.description,
            target_record_id=target,
            reasoning=parsed.reasoning,
        )


def degraded_result(chunk_text: str) -> MappingResult:
    """The create_new fallback used when a chunk cannot be classified."""
    return MappingResult(
        action=MappingAction.CREATE_NEW,
        confidence=0.0,
        risk_level=RiskLevel.LOW,
        category=ItemType.ACTION,
        extracted_title=_fallback_title(chunk_text),
        extracted_description=chunk_text.strip(),
        target_record_id=None,
        reasoning=DEGRADED_REASONING,
        degraded=True,
    )


def detect_document_type(content: str, classifier: Classifier) -> DocumentType:
    """Ask *classifier* for the type of the document's opening text.

    Failures and unknown tags fall back to ``general``.
    """
    try:
        tag = classifier.detect_type(content[:_TYPE_DETECTION_CHARS])
    except Exception as exc:  # detection is advisory
        logger.warning("Document type detection failed, using general: %s", exc)
        return DocumentType.GENERAL
    return DocumentType.parse(tag)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _parse(raw: object, chunk_text: str) -> _Parsed:
    if not isinstance(raw, dict):
        raise ClassificationDegraded("classifier answer is not an object")

    try:
        action = MappingAction(raw.get("action"))
    except ValueError:
        raise ClassificationDegraded(f"invalid action {raw.get('action')!r}") from None

    confidence = raw.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise ClassificationDegraded(f"confidence is not numeric: {confidence!r}")
    if confidence != confidence:  # NaN
        raise ClassificationDegraded("confidence is NaN")

    title = raw.get("extractedTitle")
    if not isinstance(title, str) or not title.strip():
        raise ClassificationDegraded("extractedTitle missing or empty")

    description = raw.get("extractedDescription")
    if not isinstance(description, str) or not description.strip():
        description = chunk_text.strip()

    try:
        category = ItemType(str(raw.get("category", "")).strip().lower())
    except ValueError:
        category = ItemType.ACTION

    try:
        risk: RiskLevel | None = RiskLevel(str(raw.get("riskLevel", "")).strip().lower())
    except ValueError:
        risk = None

    target = raw.get("targetRecordId") or raw.get("targetTaskId")
    target = str(target) if target not in (None, "") else None

    reasoning = raw.get("reasoning")

    return _Parsed(
        action=action,
        confidence=min(1.0, max(0.0, float(confidence))),
        risk_level=risk,
        category=category,
        title=title.strip(),
        description=description,
        target=target,
        reasoning=reasoning if isinstance(reasoning, str) else "",
    )


def _fallback_title(chunk_text: str) -> str:
    lines = chunk_text.strip().splitlines()
    first = lines[0].strip() if lines else ""
    if len(first) > _FALLBACK_TITLE_CHARS:
        return first[: _FALLBACK_TITLE_CHARS - 1].rstrip() + "…"
    return first or "Untitled"
