"""repolens configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (REPOLENS_EMBEDDING_MODEL, REPOLENS_GENERATION_MODEL,
                             REPOLENS_MAX_CHUNKS)
  3. Per-project repolens.yaml  (current directory)
  4. Global ~/.repolens/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys or tokens; use environment variables.
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

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".repolens"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "repolens.yaml"

# Fields that suggest a credential are forbidden in global config.
# Does NOT match legitimate keys like max_tokens or chars_per_token.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|(?<!_per)_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    [
        "embedding",
        "generation",
        "retrieval",
        "chunking",
        "ingest",
        "vector_index",
        "cache",
        "logging",
    ]
)

_LOG_LEVELS = frozenset(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])


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
    """Embedding model configuration (repolens.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 96


@dataclass
class GenerationCfg:
    """Generative model configuration (repolens.yaml: generation:)."""

    model: str = "openai/gpt-4o"
    temperature: float = 0.3
    max_tokens: int = 2000


@dataclass
class RetrievalCfg:
    """Retrieval configuration (repolens.yaml: retrieval:).

    Attributes:
        top_k: Default top-K for queries that do not fix their own.
        non_cacheable: Feature names whose answers are never cached.
    """

    top_k: int = 8
    non_cacheable: list[str] = field(default_factory=lambda: ["ask_repo"])


@dataclass
class ChunkingCfg:
    """Chunk window configuration (repolens.yaml: chunking:)."""

    chunk_size: int = 400
    overlap: int = 50
    chars_per_token: int = 4
    newline_lookahead: int = 200


@dataclass
class IngestCfg:
    """Fetch limits and ingestion policy (repolens.yaml: ingest:)."""

    max_files: int = 50
    max_chunks: int = 2000
    max_file_size_bytes: int = 500_000
    extensions: list[str] = field(default_factory=lambda: [".js", ".ts", ".jsx", ".tsx", ".py"])
    pending_timeout_seconds: int = 3600


@dataclass
class VectorIndexCfg:
    batch_size: int = 100


@dataclass
class CacheCfg:
    """Response cache configuration (repolens.yaml: cache:).

    Bump ``version`` to invalidate every cached answer.
    """

    ttl_hours: float = 24
    version: str = "v1"


@dataclass
class LoggingCfg:
    level: str = "WARNING"


@dataclass
class RepolensConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    ingest: IngestCfg = field(default_factory=IngestCfg)
    vector_index: VectorIndexCfg = field(default_factory=VectorIndexCfg)
    cache: CacheCfg = field(default_factory=CacheCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


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
                f"Unknown config key '{key}' in '{source}' (ignored).",
                UserWarning,
                stacklevel=4,
            )


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config file '{path}' is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level.")
    return data


def _int(section: dict[str, Any], key: str, default: int, *, minimum: int = 1) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Config value '{key}' must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"Config value '{key}' must be >= {minimum}, got {value}")
    return value


def _float(section: dict[str, Any], key: str, default: float, *, minimum: float = 0.0) -> float:
    raw = section.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Config value '{key}' must be a number, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"Config value '{key}' must be >= {minimum}, got {value}")
    return value


def _str_list(section: dict[str, Any], key: str, default: list[str]) -> list[str]:
    raw = section.get(key, default)
    if not isinstance(raw, list):
        raise ConfigError(f"Config value '{key}' must be a list, got {raw!r}")
    return [str(v) for v in raw]


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


def _cfg_from_dict(data: dict[str, Any]) -> RepolensConfig:
    """Build a *RepolensConfig* from a merged raw YAML dict."""
    cfg = RepolensConfig()

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=_int(e, "dimensions", cfg.embedding.dimensions),
            batch_size=_int(e, "batch_size", cfg.embedding.batch_size),
        )

    if "generation" in data:
        g = data["generation"] or {}
        cfg.generation = GenerationCfg(
            model=str(g.get("model", cfg.generation.model)),
            temperature=_float(g, "temperature", cfg.generation.temperature),
            max_tokens=_int(g, "max_tokens", cfg.generation.max_tokens),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        cfg.retrieval = RetrievalCfg(
            top_k=_int(r, "top_k", cfg.retrieval.top_k),
            non_cacheable=_str_list(r, "non_cacheable", cfg.retrieval.non_cacheable),
        )

    if "chunking" in data:
        c = data["chunking"] or {}
        cfg.chunking = ChunkingCfg(
            chunk_size=_int(c, "chunk_size", cfg.chunking.chunk_size),
            overlap=_int(c, "overlap", cfg.chunking.overlap, minimum=0),
            chars_per_token=_int(c, "chars_per_token", cfg.chunking.chars_per_token),
            newline_lookahead=_int(c, "newline_lookahead", cfg.chunking.newline_lookahead, minimum=0),
        )
        if cfg.chunking.overlap >= cfg.chunking.chunk_size:
            raise ConfigError("chunking.overlap must be smaller than chunking.chunk_size")

    if "ingest" in data:
        i = data["ingest"] or {}
        cfg.ingest = IngestCfg(
            max_files=_int(i, "max_files", cfg.ingest.max_files),
            max_chunks=_int(i, "max_chunks", cfg.ingest.max_chunks),
            max_file_size_bytes=_int(i, "max_file_size_bytes", cfg.ingest.max_file_size_bytes),
            extensions=_str_list(i, "extensions", cfg.ingest.extensions),
            pending_timeout_seconds=_int(
                i, "pending_timeout_seconds", cfg.ingest.pending_timeout_seconds
            ),
        )

    if "vector_index" in data:
        v = data["vector_index"] or {}
        cfg.vector_index = VectorIndexCfg(
            batch_size=_int(v, "batch_size", cfg.vector_index.batch_size),
        )

    if "cache" in data:
        ca = data["cache"] or {}
        ttl_hours = _float(ca, "ttl_hours", cfg.cache.ttl_hours)
        if ttl_hours <= 0:
            raise ConfigError(f"Config value 'ttl_hours' must be > 0, got {ttl_hours}")
        cfg.cache = CacheCfg(
            ttl_hours=ttl_hours,
            version=str(ca.get("version", cfg.cache.version)),
        )

    if "logging" in data:
        lg = data["logging"] or {}
        level = str(lg.get("level", cfg.logging.level)).upper()
        if level not in _LOG_LEVELS:
            raise ConfigError(
                f"logging.level must be one of {', '.join(sorted(_LOG_LEVELS))}, got '{level}'"
            )
        cfg.logging = LoggingCfg(level=level)

    return cfg


def _apply_env_overrides(cfg: RepolensConfig) -> RepolensConfig:
    """Apply REPOLENS_* environment variable overrides (layer 2)."""
    if model := os.environ.get("REPOLENS_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("REPOLENS_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if max_chunks := os.environ.get("REPOLENS_MAX_CHUNKS"):
        cfg.ingest.max_chunks = _int(
            {"REPOLENS_MAX_CHUNKS": max_chunks}, "REPOLENS_MAX_CHUNKS", cfg.ingest.max_chunks
        )
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RepolensConfig:
    """Load and return a merged *RepolensConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *repolens.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If the global config contains API-key-like fields, or if
            any value is malformed or out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = _read_yaml(global_path)
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = _read_yaml(project_cfg_path)
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    return _apply_env_overrides(cfg)
