"""
Shared helpers used across features.
"""
import logging

from authz.core import config

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_configured = False


def get_logger(name: str) -> logging.Logger:
    """
    Return a module logger, configuring the root handler on first use.

    Usage:
        from authz.utils import get_logger

        log = get_logger(__name__)
    """
    global _configured
    if not _configured:
        logging.basicConfig(level=config.LOG_LEVEL, format=_LOG_FORMAT)
        _configured = True
    return logging.getLogger(name)
