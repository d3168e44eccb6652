"""
Configuration — loads settings from .coding-memory.yaml, environment
variables and built-in defaults (priority: env > YAML > defaults).

:class:`ConfigStore` owns the live settings.  Patches are validated against
the :class:`Config` fields, refused for keys pinned by an environment
variable, and written back to the YAML overlay so they survive restarts.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import asdict, dataclass, fields
from typing import Any, Mapping, Optional

import yaml

from .errors import ConfigLockedError, StorageError, ValidationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "CODING_MEMORY_"

_DEFAULTS = {
    "db_path": "",
    "project_path": "",
    "log_level": "warning",
    "log_dir": ".coding-memory/logs",
    "embedding_provider": "none",
    "embedding_model": "nomic-embed-text",
    "embedding_base_url": "",
    "embedding_timeout_s": 5.0,
    "openai_api_key": "",
    "reranking_enabled": False,
    "reranking_provider": "heuristic",
    "reranking_max_candidates": 20,
    "reranking_model": "",
    "reranking_base_url": "http://localhost:1234/v1",
    "lexical_weight": 1.0,
    "vector_weight": 1.0,
    "min_similarity": 0.3,
    "max_context_observations": 50,
    "entity_graph_enabled": True,
}

_CHOICES = {
    "log_level": ("debug", "info", "warning", "error"),
    "embedding_provider": ("none", "openai", "ollama"),
    "reranking_provider": ("heuristic", "llm"),
}

# Config file search locations
_CONFIG_FILENAMES = [".coding-memory.yaml", ".coding-memory.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        return explicit_path if os.path.isfile(explicit_path) else None

    search_dirs = [os.getcwd(), os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", path, exc)
        return {}


def env_key(name: str) -> str:
    return ENV_PREFIX + name.upper()


def _cast(value: Any, default: Any) -> Any:
    """Coerce a raw env/YAML value to the type of *default*."""
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return str(value)


@dataclass
class Config:
    """Runtime options for one memory engine."""

    db_path: str = _DEFAULTS["db_path"]
    project_path: str = _DEFAULTS["project_path"]
    log_level: str = _DEFAULTS["log_level"]
    log_dir: str = _DEFAULTS["log_dir"]
    embedding_provider: str = _DEFAULTS["embedding_provider"]
    embedding_model: str = _DEFAULTS["embedding_model"]
    embedding_base_url: str = _DEFAULTS["embedding_base_url"]
    embedding_timeout_s: float = _DEFAULTS["embedding_timeout_s"]
    openai_api_key: str = _DEFAULTS["openai_api_key"]
    reranking_enabled: bool = _DEFAULTS["reranking_enabled"]
    reranking_provider: str = _DEFAULTS["reranking_provider"]
    reranking_max_candidates: int = _DEFAULTS["reranking_max_candidates"]
    reranking_model: str = _DEFAULTS["reranking_model"]
    reranking_base_url: str = _DEFAULTS["reranking_base_url"]
    lexical_weight: float = _DEFAULTS["lexical_weight"]
    vector_weight: float = _DEFAULTS["vector_weight"]
    min_similarity: float = _DEFAULTS["min_similarity"]
    max_context_observations: int = _DEFAULTS["max_context_observations"]
    entity_graph_enabled: bool = _DEFAULTS["entity_graph_enabled"]

    @property
    def resolved_project_path(self) -> str:
        return os.path.abspath(self.project_path or os.getcwd())

    @property
    def resolved_db_path(self) -> str:
        if self.db_path:
            return self.db_path
        return os.path.join(self.resolved_project_path, ".coding-memory", "memory.db")

    def to_dict(self, redact: bool = True) -> dict[str, Any]:
        data = asdict(self)
        if redact and data.get("openai_api_key"):
            data["openai_api_key"] = "***"
        return data

    @classmethod
    def from_sources(
        cls,
        yaml_data: Mapping[str, Any] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> "Config":
        """Resolve every field as env > yaml > default."""
        yd = yaml_data or {}
        env = os.environ if env is None else env
        values: dict[str, Any] = {}
        for name, default in _DEFAULTS.items():
            raw = env.get(env_key(name))
            if raw is None:
                raw = yd.get(name)
            if raw is None:
                continue
            try:
                values[name] = _cast(raw, default)
            except (TypeError, ValueError):
                logger.warning("Ignoring invalid value for %s: %r", name, raw)
        if "openai_api_key" not in values and env.get("OPENAI_API_KEY"):
            values["openai_api_key"] = env["OPENAI_API_KEY"]
        return cls(**values)

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls.from_sources(yaml_data)


_FIELD_NAMES = tuple(f.name for f in fields(Config))


# ---------------------------------------------------------------------------
# ConfigStore
# ---------------------------------------------------------------------------

class ConfigStore:
    """
    Live, patchable configuration.

    Parameters
    ----------
    config_path:
        YAML file that holds the persisted overlay.  When ``None`` the usual
        search locations are tried; if nothing is found, patches are kept in
        memory only.
    env:
        Environment mapping (defaults to ``os.environ``).
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._env = os.environ if env is None else env
        self._path = config_path or _find_config_file()
        self._overlay: dict[str, Any] = (
            _load_yaml(self._path) if self._path and os.path.isfile(self._path) else {}
        )
        self._lock = threading.Lock()
        self._config = Config.from_sources(self._overlay, self._env)

    @property
    def path(self) -> Optional[str]:
        return self._path

    def get(self) -> Config:
        with self._lock:
            return self._config

    def locked_keys(self) -> set[str]:
        """Keys pinned by an environment variable."""
        return {name for name in _FIELD_NAMES if env_key(name) in self._env}

    def snapshot(self, keys) -> dict[str, Any]:
        """Current values of exactly *keys*."""
        current = asdict(self.get())
        return {key: current[key] for key in keys if key in current}

    def validate(self, patch: Mapping[str, Any]) -> dict[str, Any]:
        """Check a patch and return it with values coerced to field types."""
        if not isinstance(patch, Mapping) or not patch:
            raise ValidationError("Config patch must be a non-empty object")
        unknown = sorted(k for k in patch if k not in _DEFAULTS)
        if unknown:
            raise ValidationError(
                f"Unknown config keys: {', '.join(unknown)}", {"keys": unknown}
            )
        locked = sorted(k for k in patch if k in self.locked_keys())
        if locked:
            raise ConfigLockedError(
                f"Config keys are set by environment variables: {', '.join(locked)}",
                {"keys": locked, "env": [env_key(k) for k in locked]},
            )
        clean: dict[str, Any] = {}
        for key, value in patch.items():
            default = _DEFAULTS[key]
            if isinstance(default, bool):
                ok = isinstance(value, bool)
            elif isinstance(default, (int, float)):
                ok = isinstance(value, (int, float)) and not isinstance(value, bool)
                if isinstance(default, int) and not isinstance(default, bool):
                    ok = ok and float(value).is_integer()
            else:
                ok = isinstance(value, str)
            if not ok:
                raise ValidationError(
                    f"Invalid type for {key}: expected {type(default).__name__}",
                    {"key": key, "value": value},
                )
            if key in _CHOICES and value not in _CHOICES[key]:
                raise ValidationError(
                    f"Invalid value for {key}: {value}",
                    {"key": key, "allowed": list(_CHOICES[key])},
                )
            clean[key] = _cast(value, default)
        return clean

    def patch(self, patch: Mapping[str, Any]) -> dict[str, Any]:
        """
        Apply *patch* and persist it.

        Returns
        -------
        dict
            The values the patched keys held before the change.
        """
        clean = self.validate(patch)
        with self._lock:
            previous = {key: getattr(self._config, key) for key in clean}
            overlay = dict(self._overlay)
            overlay.update(clean)
            if self._path:
                self._write_overlay(overlay)
            self._overlay = overlay
            self._config = Config.from_sources(self._overlay, self._env)
        logger.info("Config patched: %s", ", ".join(sorted(clean)))
        return previous

    def _write_overlay(self, overlay: dict[str, Any]) -> None:
        try:
            directory = os.path.dirname(os.path.abspath(self._path))
            os.makedirs(directory, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as f:
                yaml.safe_dump(overlay, f, default_flow_style=False, sort_keys=True)
        except OSError as exc:
            raise StorageError(f"Could not write config file {self._path}: {exc}") from exc
