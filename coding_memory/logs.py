"""
Logger setup for the command-line and RPC entry points.

Library code only calls ``logging.getLogger(__name__)``; handlers are
attached here, once, by whichever front-end starts the process.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime

_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logger(
    log_dir: str = ".coding-memory/logs",
    stderr_level: str | None = None,
) -> logging.Logger:
    """Creates a file logger. All verbose output goes here.

    Parameters
    ----------
    log_dir:
        Directory for the timestamped log file.
    stderr_level:
        If given (``debug``/``info``/``warning``/``error``), also echo
        records at that level or above to stderr.  Never stdout: the RPC
        transport owns it.
    """
    logger = logging.getLogger("coding_memory")
    logger.setLevel(logging.DEBUG)
    if getattr(logger, "_coding_memory_configured", False):
        return logger

    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"memory_{timestamp}.log")

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(fh)

    if stderr_level:
        sh = logging.StreamHandler(sys.stderr)
        sh.setLevel(_LEVELS.get(stderr_level.lower(), logging.WARNING))
        sh.setFormatter(logging.Formatter(_FORMAT, datefmt="%H:%M:%S"))
        logger.addHandler(sh)

    logger._coding_memory_configured = True  # type: ignore[attr-defined]
    return logger
