"""
Configuration: loads settings from .vault_search.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).
"""

from __future__ import annotations

import os

import yaml


_DEFAULTS = {
    "index_dir": ".vault_search",
    "embedding_dimension": 384,
    "hybrid_alpha": 0.7,
    "substring_weight": 0.5,
    "default_limit": 5,
    "max_limit": 100,
    "related_limit": 10,
    "index_workers": 4,
    "lock_retries": 3,
    "lock_retry_delay": 0.2,
    "exclude_dirs": ["Templates"],
    "embed_fields": ["title", "gist", "tags"],
    "log_level": "WARNING",
}

# Config file search locations
_CONFIG_FILENAMES = [".vault_search.yaml", ".vault_search.yml"]


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, CWD, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

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
    except (OSError, yaml.YAMLError):
        return {}


def _str_list(value, default: list[str]) -> list[str]:
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    if isinstance(value, list):
        return [str(v) for v in value]
    return list(default)


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables
    3. .vault_search.yaml config file
    4. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}

        # Helper: env var > yaml > default
        def _get(env_key: str, yaml_key: str, default, cast=str):
            env_val = os.getenv(env_key)
            if env_val is not None:
                return cast(env_val)
            yaml_val = yd.get(yaml_key)
            if yaml_val is not None:
                return cast(yaml_val)
            return default

        self.INDEX_DIR = _get("VAULT_SEARCH_INDEX_DIR", "index_dir",
                              _DEFAULTS["index_dir"])
        self.EMBEDDING_DIMENSION = _get("VAULT_SEARCH_DIMENSION",
                                        "embedding_dimension",
                                        _DEFAULTS["embedding_dimension"],
                                        cast=int)

        # Ranking policy
        self.HYBRID_ALPHA = _get("VAULT_SEARCH_ALPHA", "hybrid_alpha",
                                 _DEFAULTS["hybrid_alpha"], cast=float)
        self.SUBSTRING_WEIGHT = _get("VAULT_SEARCH_SUBSTRING_WEIGHT",
                                     "substring_weight",
                                     _DEFAULTS["substring_weight"], cast=float)
        self.DEFAULT_LIMIT = _get("VAULT_SEARCH_DEFAULT_LIMIT", "default_limit",
                                  _DEFAULTS["default_limit"], cast=int)
        self.MAX_LIMIT = _get("VAULT_SEARCH_MAX_LIMIT", "max_limit",
                              _DEFAULTS["max_limit"], cast=int)
        self.RELATED_LIMIT = _get("VAULT_SEARCH_RELATED_LIMIT", "related_limit",
                                  _DEFAULTS["related_limit"], cast=int)

        # Indexing
        self.INDEX_WORKERS = _get("VAULT_SEARCH_INDEX_WORKERS", "index_workers",
                                  _DEFAULTS["index_workers"], cast=int)
        self.LOCK_RETRIES = _get("VAULT_SEARCH_LOCK_RETRIES", "lock_retries",
                                 _DEFAULTS["lock_retries"], cast=int)
        self.LOCK_RETRY_DELAY = _get("VAULT_SEARCH_LOCK_RETRY_DELAY",
                                     "lock_retry_delay",
                                     _DEFAULTS["lock_retry_delay"], cast=float)

        # Note source
        self.EXCLUDE_DIRS: list[str] = _str_list(
            os.getenv("VAULT_SEARCH_EXCLUDE_DIRS") or yd.get("exclude_dirs"),
            _DEFAULTS["exclude_dirs"],
        )
        self.EMBED_FIELDS: list[str] = _str_list(
            yd.get("embed_fields"), _DEFAULTS["embed_fields"]
        )

        self.LOG_LEVEL = _get("VAULT_SEARCH_LOG_LEVEL", "log_level",
                              _DEFAULTS["log_level"]).upper()

        if self.EMBEDDING_DIMENSION < 2 or self.EMBEDDING_DIMENSION % 2:
            raise ValueError(
                f"embedding_dimension must be an even number >= 2, "
                f"got {self.EMBEDDING_DIMENSION}"
            )
        if not 0.0 <= self.HYBRID_ALPHA <= 1.0:
            raise ValueError(
                f"hybrid_alpha must be within [0, 1], got {self.HYBRID_ALPHA}"
            )

    def index_config(self):
        """Return the persisted :class:`IndexConfig` for the running build."""
        from .kb.local.embedder import index_config
        return index_config(self.EMBEDDING_DIMENSION)

    def db_path(self, vault_root: str) -> str:
        """Return the SQLite index path for *vault_root*."""
        index_dir = self.INDEX_DIR
        if not os.path.isabs(index_dir):
            index_dir = os.path.join(vault_root, index_dir)
        return os.path.join(index_dir, "index.db")

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
