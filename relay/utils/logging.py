"""
Logging setup shared by the API process and the relay core
"""
import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"

# Handler installed by the last configure_logging() call
_handler: Optional[logging.Handler] = None


def configure_logging(level: str = "INFO") -> None:
    """Install a single stdout handler on the root logger.

    Safe to call more than once; an existing handler installed by a previous
    call is replaced rather than duplicated.
    """
    global _handler
    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)

    _handler = logging.StreamHandler(sys.stdout)
    _handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(_handler)
    root.setLevel(level.upper())

    # uvicorn's access log duplicates the metrics middleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
