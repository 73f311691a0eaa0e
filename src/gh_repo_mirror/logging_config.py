"""Logging setup for the ``gh_repo_mirror`` logger hierarchy.

Modules log through ``logging.getLogger("gh_repo_mirror.<area>")``; nothing is
emitted until ``configure_logging`` installs a handler on the package root.
``GH_MIRROR_LOG_LEVEL`` controls the level when none is passed.
"""

from __future__ import annotations

import logging
import os

ROOT_LOGGER = "gh_repo_mirror"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int | None = None) -> logging.Logger:
    if level is None:
        level = os.getenv("GH_MIRROR_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    if not any(getattr(h, "_gh_repo_mirror", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        handler._gh_repo_mirror = True
        logger.addHandler(handler)
    logger.propagate = False
    return logger
