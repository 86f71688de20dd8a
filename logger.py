import os
import sys
import logging
from logging.handlers import RotatingFileHandler
from config import LOG_DIR, LOG_FILE, LOG_LEVEL, LOG_CONSOLE

ROOT_LOGGER = "backoffice"
FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

def _root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if root.handlers:
        return root

    os.makedirs(LOG_DIR, exist_ok=True)
    root.setLevel(getattr(logging, LOG_LEVEL, logging.DEBUG))

    # one file handler for every module, so rotation only ever renames one open file
    handler = RotatingFileHandler(
        os.path.join(LOG_DIR, LOG_FILE),
        maxBytes=5 * 1024 * 1024,   # 5 MB
        backupCount=5,
        encoding="utf-8",           # receiver names / addresses are Korean
    )
    handler.setFormatter(logging.Formatter(FORMAT))
    root.addHandler(handler)

    if LOG_CONSOLE:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(FORMAT))
        root.addHandler(console)

    return root

def get_logger(name: str) -> logging.Logger:
    """backoffice.<name>; handlers live on the shared parent."""
    return _root().getChild(name)
