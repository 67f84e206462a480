"""
Logging helpers shared by every feature module.
"""
import logging
import sys

from answly.core import config

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger("answly")
    root.addHandler(handler)
    root.setLevel(config.LOG_LEVEL)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Return a module logger under the ``answly`` hierarchy.

    Usage:
        log = get_logger(__name__)
        log.info("Granted %s", scope)
    """
    _configure_root()
    if name == "__main__" or not name.startswith("answly"):
        name = f"answly.{name}"
    return logging.getLogger(name)
