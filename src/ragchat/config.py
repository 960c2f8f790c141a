"""ragchat configuration loader.

Layers, lowest priority first:

  1. dataclass defaults below
  2. global ``~/.ragchat/config.yaml`` (model defaults; secrets are rejected)
  3. per-project ``ragchat.yaml`` in the working directory
  4. environment: OLLAMA_BASE_URL, OLLAMA_MODEL, RAGCHAT_EMBEDDING_MODEL, RAGCHAT_DB

Command-line flags are applied by the CLI on top of the returned config.
Files are read with yaml.safe_load() only.
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".ragchat"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "ragchat.yaml"

# Secret-looking key names (api_key, *_token, secret, password, credentials).
# max_tokens and similar are allowed.
_SECRET_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

DEFAULT_SYSTEM_PROMPT = (
    "You are an AI assistant that provides helpful, accurate, and concise information. "
    "When you don't know something or if the context doesn't contain relevant information, "
    "admit that you don't know rather than making up information."
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """A config layer holds a forbidden key or a value ragchat cannot run with."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class GenerationCfg:
    """Text-generation service (``generation:``).

    Attributes:
        model: LiteLLM model string; ``ollama_chat/<name>`` talks to Ollama.
        api_base: Base URL of the Ollama server, also probed by the health gate.
        timeout: Seconds before a completion or stream call is abandoned.
    """

    model: str = "ollama_chat/llama3"
    api_base: str = "http://localhost:11434"
    timeout: float = 120.0
    temperature: float = 0.7
    max_tokens: int = 1024


@dataclass
class EmbeddingCfg:
    """Embedding models and vector sizes (``embedding:``)."""

    model: str = "ollama/nomic-embed-text"
    image_model: str = "vertex_ai/multimodalembedding@001"
    dimensions: int = 768
    image_dimensions: int = 1408
    timeout: float = 300.0


@dataclass
class RetrievalCfg:
    limit: int = 5
    min_score: float = 0.7


@dataclass
class ChunkingCfg:
    chunk_size: int = 500
    chunk_overlap: int = 100
    preserve_paragraphs: bool = True


@dataclass
class HealthCfg:
    """Health probes (``health:``).

    Attributes:
        retries: Extra attempts per probe after the first failure.
        backoff: Initial delay in seconds; doubled after every failed attempt.
        timeout: Per-attempt timeout in seconds.
    """

    retries: int = 2
    backoff: float = 0.3
    timeout: float = 2.0


@dataclass
class ChatCfg:
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    use_rag: bool = True


@dataclass
class StorageCfg:
    db: str = ".ragchat.db"


@dataclass
class RagChatConfig:
    """Merged configuration returned by :func:`load_config`."""

    generation: GenerationCfg = field(default_factory=GenerationCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    health: HealthCfg = field(default_factory=HealthCfg)
    chat: ChatCfg = field(default_factory=ChatCfg)
    storage: StorageCfg = field(default_factory=StorageCfg)


_SECTIONS: dict[str, type] = {f.name: f.default_factory for f in fields(RagChatConfig)}


# ---------------------------------------------------------------------------
# Layer reading
# ---------------------------------------------------------------------------


def _reject_secrets(data: Any, source: Path, prefix: str = "") -> None:
    if not isinstance(data, dict):
        return
    for key, value in data.items():
        dotted = f"{prefix}.{key}" if prefix else str(key)
        if _SECRET_KEY_RE.search(str(key)):
            raise ConfigError(
                f"Global config '{source}' contains a forbidden key '{dotted}'.\n"
                f"  Secrets belong in the environment, not in {source.name}:\n"
                f"    export {str(key).upper().replace('-', '_')}=<value>"
            )
        _reject_secrets(value, source, dotted)


def _read_layer(path: Path, *, is_global: bool) -> dict[str, Any]:
    """Parse one YAML layer; a missing file is an empty layer."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must contain a mapping at the top level")
    if is_global:
        _reject_secrets(data, path)
    for key in data:
        if key not in _SECTIONS:
            warnings.warn(f"Ignoring unknown config section '{key}' in '{path}'", UserWarning, stacklevel=3)
    return data


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _build_section(name: str, default: Any, raw: Any) -> Any:
    """Overlay *raw* on a section dataclass, coercing to the default's type."""
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping, got {raw!r}")
    updates: dict[str, Any] = {}
    for f in fields(default):
        if f.name not in raw:
            continue
        kind = type(getattr(default, f.name))
        try:
            updates[f.name] = kind(raw[f.name])
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                f"{name}.{f.name} must be {kind.__name__}, got {raw[f.name]!r}"
            ) from exc
    return replace(default, **updates)


def _apply_env(cfg: RagChatConfig) -> None:
    env = os.environ
    if env.get("OLLAMA_BASE_URL"):
        cfg.generation.api_base = env["OLLAMA_BASE_URL"]
    if env.get("OLLAMA_MODEL"):
        model = env["OLLAMA_MODEL"]
        cfg.generation.model = model if "/" in model else f"ollama_chat/{model}"
    if env.get("RAGCHAT_EMBEDDING_MODEL"):
        cfg.embedding.model = env["RAGCHAT_EMBEDDING_MODEL"]
    if env.get("RAGCHAT_DB"):
        cfg.storage.db = env["RAGCHAT_DB"]


def validate_config(cfg: RagChatConfig) -> None:
    """Raise ConfigError if *cfg* holds values the pipeline cannot run with."""
    ch = cfg.chunking
    if ch.chunk_size < 1:
        raise ConfigError(f"chunking.chunk_size must be >= 1, got {ch.chunk_size}")
    if ch.chunk_overlap < 0 or ch.chunk_overlap >= ch.chunk_size:
        raise ConfigError(
            f"chunking.chunk_overlap must be in [0, chunk_size), got {ch.chunk_overlap} "
            f"(chunk_size={ch.chunk_size})"
        )
    if not 0.0 <= cfg.retrieval.min_score <= 1.0:
        raise ConfigError(
            f"retrieval.min_score must be in [0.0, 1.0], got {cfg.retrieval.min_score}"
        )
    if cfg.retrieval.limit < 1:
        raise ConfigError(f"retrieval.limit must be >= 1, got {cfg.retrieval.limit}")
    if not cfg.generation.api_base.startswith(("http://", "https://")):
        raise ConfigError(
            f"generation.api_base must be an http(s) URL: '{cfg.generation.api_base}'"
        )
    if cfg.health.retries < 0:
        raise ConfigError(f"health.retries must be >= 0, got {cfg.health.retries}")
    for section_name in ("generation", "embedding", "health"):
        timeout = getattr(cfg, section_name).timeout
        if timeout <= 0:
            raise ConfigError(f"{section_name}.timeout must be > 0, got {timeout}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RagChatConfig:
    """Merge the config layers and validate the result.

    Args:
        project_dir: Directory holding ``ragchat.yaml``. Defaults to CWD.
        global_config_path: Global config location (tests point this elsewhere).

    Raises:
        ConfigError: If the global layer holds a secret-like key or a merged
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    project_path = (project_dir if project_dir is not None else Path.cwd()) / _PROJECT_CONFIG_NAME

    merged = _merge(
        _read_layer(global_path, is_global=True),
        _read_layer(project_path, is_global=False),
    )
    cfg = RagChatConfig(
        **{
            name: _build_section(name, factory(), merged.get(name))
            for name, factory in _SECTIONS.items()
        }
    )
    _apply_env(cfg)
    cfg.generation.api_base = cfg.generation.api_base.rstrip("/")

    validate_config(cfg)
    return cfg


_GLOBAL_TEMPLATE = """\
# ragchat global configuration: model defaults shared by all projects.
# Do not put API keys here; export them as environment variables.

"""


def ensure_global_config(global_config_path: Path | None = None) -> Path:
    """Write a default global config if none exists. Returns its path.

    The directory is created 0o700 and the file 0o600.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    if target.exists():
        return target

    defaults = RagChatConfig()
    body = {
        "generation": {
            "model": defaults.generation.model,
            "api_base": defaults.generation.api_base,
        },
        "embedding": {
            "model": defaults.embedding.model,
            "dimensions": defaults.embedding.dimensions,
        },
    }
    target.write_text(_GLOBAL_TEMPLATE + yaml.safe_dump(body, sort_keys=False), encoding="utf-8")
    target.chmod(0o600)
    return target
