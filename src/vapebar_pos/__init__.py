"""VapeBar POS: sales, loans, and warranty tracking over a shop workbook.

Importing the package configures the shared ``log`` logger used by every
module. Records go to stderr and to a rotating file under ``.logs`` at the
project root; ``VAPEBAR_LOG_DIR`` and ``VAPEBAR_LOG_LEVEL`` override the
directory and the level.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

__version__ = "0.1.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("VAPEBAR_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "vapebar_pos.log"
LOG_LEVEL = os.environ.get("VAPEBAR_LOG_LEVEL", "INFO").upper()


def _configure_logging() -> logging.Logger:
    """Attach the file and console handlers to the package logger once."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = logging.getLevelName(LOG_LEVEL)
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        print(
            f"Warning: unable to open VapeBar log file '{LOG_FILE}': {exc}",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.debug("VapeBar POS %s logging to '%s'", __version__, LOG_FILE)

__all__ = ["log", "__version__", "LOG_FILE"]
