"""intake configuration loader.

Priority (high → low):
  1. CLI flags           (handled at the call site, not here)
  2. Environment variables  (INTAKE_CLASSIFIER_MODEL, INTAKE_EMBEDDING_MODEL,
                             INTAKE_RETRIEVAL_BACKEND)
  3. Per-project intake.yaml  (next to the workspace database)
  4. Global ~/.intake/config.yaml  (model defaults only: no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from intake.ingest.splitter import (
    DEFAULT_CHUNK_OVERLAP,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_SEPARATORS,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".intake"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
PROJECT_CONFIG_NAME: str = "intake.yaml"

# Fields that suggest an API key: forbidden in global config.
# Does NOT match legitimate config keys like max_tokens or top_k.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "classifier", "retrieval", "splitter", "analysis"]
)

RETRIEVAL_BACKENDS: frozenset[str] = frozenset(["vector", "heuristic"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (intake.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536


@dataclass
class ClassifierCfg:
    """Chunk classifier configuration (intake.yaml: classifier:).

    Attributes:
        model: LiteLLM model used for classification and type detection.
        timeout: Per-call timeout in seconds before a chunk is degraded.
        confidence_floor: Mappings below this confidence become create_new.
        max_workers: Concurrent classifier calls per analysis.
        num_retries: LiteLLM retries per call (0 = single attempt).
    """

    model: str = "openai/gpt-4o-mini"
    timeout: float = 30.0
    confidence_floor: float = 0.5
    max_workers: int = 4
    num_retries: int = 0


@dataclass
class RetrievalCfg:
    """Retrieval configuration (intake.yaml: retrieval:)."""

    backend: str = "vector"  # vector | heuristic
    candidate_top_k: int = 5
    candidate_threshold: float = 0.3
    knowledge_top_k: int = 5
    knowledge_threshold: float = 0.5


@dataclass
class SplitterCfg:
    """Text splitter configuration (intake.yaml: splitter:)."""

    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP
    separators: list[str] = field(default_factory=lambda: list(DEFAULT_SEPARATORS))


@dataclass
class AnalysisCfg:
    """Document analysis configuration (intake.yaml: analysis:).

    Attributes:
        min_chunk_chars: Chunks with fewer non-whitespace-trimmed characters
            are not classified.
        max_chunks: Classify at most this many chunks (0 = no limit).
    """

    min_chunk_chars: int = 20
    max_chunks: int = 0


@dataclass
class IntakeConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    classifier: ClassifierCfg = field(default_factory=ClassifierCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    splitter: SplitterCfg = field(default_factory=SplitterCfg)
    analysis: AnalysisCfg = field(default_factory=AnalysisCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}': ignored.",
                UserWarning,
                stacklevel=4,
            )


def validate_config(cfg: IntakeConfig) -> None:
    """Raise ConfigError for values the pipeline cannot run with."""
    if cfg.retrieval.backend not in RETRIEVAL_BACKENDS:
        raise ConfigError(
            f"retrieval.backend must be one of {sorted(RETRIEVAL_BACKENDS)}, "
            f"got '{cfg.retrieval.backend}'"
        )
    if not 0.0 <= cfg.classifier.confidence_floor <= 1.0:
        raise ConfigError(
            f"classifier.confidence_floor must be in [0, 1], got {cfg.classifier.confidence_floor}"
        )
    if cfg.classifier.max_workers < 1:
        raise ConfigError("classifier.max_workers must be >= 1")
    if cfg.classifier.timeout <= 0:
        raise ConfigError("classifier.timeout must be > 0")
    if cfg.splitter.chunk_size < 1:
        raise ConfigError("splitter.chunk_size must be >= 1")
    if not 0 <= cfg.splitter.chunk_overlap < cfg.splitter.chunk_size:
        raise ConfigError(
            f"splitter.chunk_overlap ({cfg.splitter.chunk_overlap}) must be >= 0 and "
            f"smaller than splitter.chunk_size ({cfg.splitter.chunk_size})"
        )
    if cfg.embedding.dimensions < 1:
        raise ConfigError("embedding.dimensions must be >= 1")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> IntakeConfig:
    """Build an *IntakeConfig* from a merged raw YAML dict."""
    cfg = IntakeConfig()

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
        )

    if "classifier" in data:
        c = data["classifier"] or {}
        cfg.classifier = ClassifierCfg(
            model=str(c.get("model", cfg.classifier.model)),
            timeout=float(c.get("timeout", cfg.classifier.timeout)),
            confidence_floor=float(
                c.get("confidence_floor", cfg.classifier.confidence_floor)
            ),
            max_workers=int(c.get("max_workers", cfg.classifier.max_workers)),
            num_retries=int(c.get("num_retries", cfg.classifier.num_retries)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        cfg.retrieval = RetrievalCfg(
            backend=str(r.get("backend", cfg.retrieval.backend)),
            candidate_top_k=int(r.get("candidate_top_k", cfg.retrieval.candidate_top_k)),
            candidate_threshold=float(
                r.get("candidate_threshold", cfg.retrieval.candidate_threshold)
            ),
            knowledge_top_k=int(r.get("knowledge_top_k", cfg.retrieval.knowledge_top_k)),
            knowledge_threshold=float(
                r.get("knowledge_threshold", cfg.retrieval.knowledge_threshold)
            ),
        )

    if "splitter" in data:
        s = data["splitter"] or {}
        cfg.splitter = SplitterCfg(
            chunk_size=int(s.get("chunk_size", cfg.splitter.chunk_size)),
            chunk_overlap=int(s.get("chunk_overlap", cfg.splitter.chunk_overlap)),
            separators=[str(x) for x in s.get("separators", cfg.splitter.separators)],
        )

    if "analysis" in data:
        a = data["analysis"] or {}
        cfg.analysis = AnalysisCfg(
            min_chunk_chars=int(a.get("min_chunk_chars", cfg.analysis.min_chunk_chars)),
            max_chunks=int(a.get("max_chunks", cfg.analysis.max_chunks)),
        )

    return cfg


def _apply_env_overrides(cfg: IntakeConfig) -> IntakeConfig:
    """Apply INTAKE_* environment variable overrides."""
    if model := os.environ.get("INTAKE_CLASSIFIER_MODEL"):
        cfg.classifier.model = model
    if model := os.environ.get("INTAKE_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if backend := os.environ.get("INTAKE_RETRIEVAL_BACKEND"):
        cfg.retrieval.backend = backend
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> IntakeConfig:
    """Load and return a merged, validated *IntakeConfig*.

    Applies layers in order: global → per-project → env vars.

    Args:
        project_dir: Directory to search for *intake.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields or a value
            is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    try:
        cfg = _cfg_from_dict(merged)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config value: {exc}") from exc

    cfg = _apply_env_overrides(cfg)
    validate_config(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.intake/config.yaml`` with defaults if it does not exist.

    Creates parent directory with mode 0o700 and the config file with
    mode 0o600 (owner-readable only).

    Args:
        global_config_path: Override path (for testing).

    Returns:
        Path to the global config file.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# intake global configuration: model defaults only.\n"
            "# NEVER store API keys here: use environment variables:\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "  dimensions: 1536\n"
            "\n"
            "classifier:\n"
            "  model: openai/gpt-4o-mini\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target


def write_project_config(project_dir: Path) -> Path:
    """Write a commented ``intake.yaml`` with defaults if none exists."""
    target = project_dir / PROJECT_CONFIG_NAME
    if not target.exists():
        target.write_text(
            "# intake project configuration.\n"
            "# API keys belong in environment variables, e.g.  export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            "  model: openai/text-embedding-3-small\n"
            "  dimensions: 1536\n"
            "\n"
            "classifier:\n"
            "  model: openai/gpt-4o-mini\n"
            "  timeout: 30\n"
            "  confidence_floor: 0.5\n"
            "\n"
            "retrieval:\n"
            "  backend: vector   # vector | heuristic\n"
            "  candidate_top_k: 5\n"
            "\n"
            "splitter:\n"
            "  chunk_size: 1000\n"
            "  chunk_overlap: 200\n",
            encoding="utf-8",
        )
    return target
