"""
Engine Environment
==================

Process-level settings read from environment variables.

Usage:
    from kbrag.config import EngineEnvironment

    env = EngineEnvironment()            # env vars or defaults
    env = EngineEnvironment(max_workers=8)

Environment Variables:
    KBRAG_MAX_WORKERS: Threads used for batch scoring (default: 4)
    KBRAG_CONFIG_PATH: YAML file with retrieval defaults (default: bundled defaults.yaml)
    KBRAG_LOG_LEVEL: Log level for configure_logging (default: INFO)
    KBRAG_LOG_JSON: Render logs as JSON when "1"/"true" (default: false)
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _get_env_str(key: str, default: str) -> str:
    return os.environ.get(key, default)


def _get_env_int(key: str, default: int) -> int:
    return int(os.environ.get(key, default))


def _get_env_bool(key: str, default: bool) -> bool:
    raw = os.environ.get(key)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineEnvironment:
    """
    Engine process settings.

    Attributes:
        max_workers: Size of the thread pool that scores corpus batches
        config_path: YAML file seeding the ConfigStore, None for the bundled defaults
        log_level: structlog minimum level
        log_json: Use the JSON renderer instead of the console renderer
    """
    max_workers: int = field(default_factory=lambda: _get_env_int("KBRAG_MAX_WORKERS", 4))
    config_path: Optional[str] = field(
        default_factory=lambda: _get_env_str("KBRAG_CONFIG_PATH", "") or None
    )
    log_level: str = field(default_factory=lambda: _get_env_str("KBRAG_LOG_LEVEL", "INFO"))
    log_json: bool = field(default_factory=lambda: _get_env_bool("KBRAG_LOG_JSON", False))

    def __post_init__(self):
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
