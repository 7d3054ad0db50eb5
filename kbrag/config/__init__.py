"""
Configuration module for KBRAG.
"""

from .environments import EngineEnvironment
from .log_setup import configure_logging
from .retrieval import MergeStrategy, RetrievalConfig
from .store import ConfigStore, default_config_path, get_config_store, reset_config_store

__all__ = [
    "EngineEnvironment",
    "configure_logging",
    "MergeStrategy",
    "RetrievalConfig",
    "ConfigStore",
    "default_config_path",
    "get_config_store",
    "reset_config_store",
]
