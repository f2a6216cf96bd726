"""Centralized logging configuration for the ``token_ledger`` package.

- ``configure_logging(...)`` attaches a single ``StreamHandler`` to the package
  root logger. Entrypoints (the CLI) call it once at start-up.
- ``get_logger(name)`` returns a logger and makes sure the package root logger
  has at least a ``NullHandler`` while nothing has been configured.

Library modules never attach their own handlers.
"""

import logging
import os
import sys
from typing import IO, Optional, Union

_PKG_LOGGER_NAME = "token_ledger"
_ENV_LEVEL = "TOKEN_LEDGER_LOG_LEVEL"
_DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_CONFIGURED = False


def _parse_level(level: Optional[Union[int, str]]) -> int:
    if isinstance(level, int):
        return level
    if isinstance(level, str):
        level = level.strip().upper()
        if level.isdigit():
            return int(level)
        numeric = getattr(logging, level, None)
        if isinstance(numeric, int):
            return numeric
        raise ValueError(f"Unknown log level: {level}")
    env_val = os.getenv(_ENV_LEVEL)
    if env_val:
        return _parse_level(env_val)
    return logging.WARNING


def configure_logging(
    level: Optional[Union[int, str]] = None,
    fmt: Optional[str] = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Configure the package root logger exactly once.

    Args:
        level: Level as ``int`` or name (``"DEBUG"``). When ``None`` the
            ``TOKEN_LEDGER_LOG_LEVEL`` environment variable is used, falling
            back to ``WARNING``.
        fmt: Optional format string.
        stream: Output stream for the handler (defaults to ``sys.stderr``).

    Raises:
        ValueError: If ``level`` is not a known level name
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, logging.NullHandler):
            logger.removeHandler(handler)

    numeric_level = _parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(fmt or _DEFAULT_FORMAT))

    logger.setLevel(numeric_level)
    logger.addHandler(handler)
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger by name, silent until the package is configured."""
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)
