# roomchat/core/logging.py

import logging
import sys
from typing import Dict

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Library loggers and the level they are pinned to.
LIBRARY_LEVELS: Dict[str, int] = {
    "redis": logging.WARNING,
    "websockets": logging.WARNING,
    "uvicorn": logging.INFO,
    "uvicorn.error": logging.INFO,
    "uvicorn.access": logging.WARNING,
}


def setup_logging(level_name: str = "INFO") -> int:
    """
    Configure broker logging.

    Broker modules log pipe-separated records (``Join|alice|general|``,
    ``Msg saved|alice|general|message|Db|``) through the root handler
    installed here. Library levels are pinned every time; the stdout handler
    is only added when nothing (e.g. Uvicorn) configured the root logger yet.

    Returns:
        The effective root level.
    """
    level = getattr(logging, level_name.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for name, library_level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        root_logger.addHandler(handler)

    return level
