import logging
import os
import sys

logger = logging.getLogger("todo_api")
logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

# Keep our records out of uvicorn's root configuration
logger.propagate = False

if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    ))
    logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Child of the application logger, e.g. ``todo_api.auth``."""
    return logger.getChild(name)
