"""
Config Store
============

Process-wide holder of the current ``RetrievalConfig``.

The store is seeded from YAML and can be tuned at runtime without a
restart. Every update validates the new values and swaps the whole frozen
snapshot under a lock, so readers only ever see a complete configuration.

Architecture:
    YAML (defaults) -> ConfigStore -> snapshot() -> engine call
                          ^
                   update() (admin tuning)

Example:
    >>> store = ConfigStore()
    >>> store.snapshot().similarity_threshold
    0.3
    >>> _ = store.update(similarity_threshold=0.4)
    >>> store.snapshot().similarity_threshold
    0.4
"""

import threading
from pathlib import Path
from typing import Any, Dict, Optional, Union

import structlog
import yaml
from pydantic import ValidationError

from kbrag.config.retrieval import RetrievalConfig

log = structlog.get_logger()


def default_config_path() -> Path:
    """Path of the YAML defaults bundled with the package."""
    return Path(__file__).parent / "defaults.yaml"


class ConfigStore:
    """
    Storage for the retrieval configuration with runtime overrides.

    Loading order:
    1. YAML file (``config_path`` or the bundled defaults)
    2. Model defaults, when the YAML is missing or invalid
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path) if config_path else default_config_path()
        self._lock = threading.Lock()
        self._version = 0
        self._snapshot = self._load()

        log.info(
            "ConfigStore initialized",
            config_path=str(self.config_path),
            similarity_threshold=self._snapshot.similarity_threshold,
            fallback_steps=list(self._snapshot.fallback_steps),
        )

    def _load_yaml(self) -> Dict[str, Any]:
        try:
            with open(self.config_path, "r") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            log.warning("Retrieval config not found, using defaults", path=str(self.config_path))
            return {}
        except yaml.YAMLError as e:
            log.error("Error parsing retrieval config", path=str(self.config_path), error=str(e))
            return {}
        return data.get("retrieval", {}) or {}

    def _load(self) -> RetrievalConfig:
        data = self._load_yaml()
        try:
            return RetrievalConfig(**data)
        except (ValidationError, TypeError) as e:
            log.error("Invalid retrieval config, using defaults", error=str(e))
            return RetrievalConfig()

    @property
    def version(self) -> int:
        """Incremented on every successful update or reload."""
        return self._version

    def snapshot(self) -> RetrievalConfig:
        """Return the current immutable configuration."""
        with self._lock:
            return self._snapshot

    def update(self, **overrides: Any) -> RetrievalConfig:
        """
        Apply runtime overrides.

        Raises:
            pydantic.ValidationError: the merged values are invalid; the
                current snapshot is left unchanged
        """
        with self._lock:
            merged = self._snapshot.model_dump()
            merged.update(overrides)
            new_config = RetrievalConfig(**merged)
            self._snapshot = new_config
            self._version += 1

        log.info(
            "Retrieval config updated",
            version=self._version,
            overrides=sorted(overrides),
        )
        return new_config

    def reload(self) -> RetrievalConfig:
        """Re-read the YAML file, discarding runtime overrides."""
        new_config = self._load()
        with self._lock:
            self._snapshot = new_config
            self._version += 1
        log.info("Retrieval config reloaded", path=str(self.config_path), version=self._version)
        return new_config


_default_store: Optional[ConfigStore] = None


def get_config_store() -> ConfigStore:
    """Return the process-wide ConfigStore singleton."""
    global _default_store
    if _default_store is None:
        from kbrag.config.environments import EngineEnvironment

        _default_store = ConfigStore(EngineEnvironment().config_path)
    return _default_store


def reset_config_store() -> None:
    """Drop the singleton (used by tests and after changing KBRAG_CONFIG_PATH)."""
    global _default_store
    _default_store = None
