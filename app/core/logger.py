import logging
import os

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s]: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Logger factory shared by the proxy and the client library."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(os.getenv("LOG_LEVEL", "DEBUG").upper())
    return logger


def mask(value: str | None) -> str:
    """Render a secret for logs without leaking it."""
    if not value:
        return "NOT SET"
    return f"***MASKED*** (length: {len(value)})"
