"""Logging setup shared by the API and scripts."""

from __future__ import annotations

import sys
from typing import Any

from loguru import logger

from moral_story_maker.common.config import LOG_LEVEL


def setup_logging(log_level: str = LOG_LEVEL) -> None:
    """Replace loguru's default sink with a single formatted stderr sink."""
    logger.remove()
    logger.add(
        sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
            "<cyan>{extra[name]}</cyan> | <level>{message}</level>"
        ),
        level=log_level,
        colorize=True,
    )


def get_logger(name: str, **context: Any) -> Any:
    """Return a logger bound to ``name`` and any extra context (story_id, user_id...)."""
    return logger.bind(name=name, **context)


setup_logging()
