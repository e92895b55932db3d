import logging
import sys

from .config import get_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_configured = False


def configure_logging() -> None:
    """Install a single stderr handler on the ``miniorg`` logger tree."""
    global _configured
    if _configured:
        return
    level = logging.getLevelName(get_settings().log_level)
    if not isinstance(level, int):
        level = logging.INFO
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))
    root = logging.getLogger("miniorg")
    root.setLevel(level)
    root.addHandler(handler)
    _configured = True
