"""
Logging Setup
=============

structlog configuration for applications embedding the engine.

The library itself only calls ``structlog.get_logger()``; applications call
``configure_logging`` once at startup.
"""

import logging
from typing import Optional

import structlog

from kbrag.config.environments import EngineEnvironment


def configure_logging(level: Optional[str] = None, json: Optional[bool] = None) -> None:
    """
    Configure structlog processors and the minimum log level.

    Args:
        level: Level name (DEBUG, INFO, ...); defaults to KBRAG_LOG_LEVEL
        json: Render JSON lines instead of console output; defaults to KBRAG_LOG_JSON
    """
    env = EngineEnvironment()
    level_name = (level or env.log_level).upper()
    use_json = env.log_json if json is None else json

    renderer = (
        structlog.processors.JSONRenderer()
        if use_json
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level_name)
        ),
        cache_logger_on_first_use=False,
    )
