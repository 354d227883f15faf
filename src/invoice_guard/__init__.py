"""Invoice lifecycle and balance-reconciliation rules.

Importing the package configures the ``invoice_guard`` logger: INFO and
above go to a rotating file, WARNING and above to stderr. Set
``INVOICE_GUARD_LOG_DIR`` to move the log file away from the project root.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("INVOICE_GUARD_LOG_DIR") or PROJECT_ROOT / ".logs")
LOG_FILE = LOG_DIR / "invoice_guard.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
CONSOLE_HANDLER_NAME = "invoice_guard.console"


def _build_file_handler(formatter: logging.Formatter) -> logging.Handler | None:
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        print(f"Warning: invoice_guard cannot write '{LOG_FILE}': {exc}", file=sys.stderr)
        return None
    handler.setLevel(logging.INFO)
    handler.setFormatter(formatter)
    return handler


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    file_handler = _build_file_handler(formatter)
    if file_handler is not None:
        logger.addHandler(file_handler)

    # rule violations are logged at WARNING, so the console shows them by default
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.set_name(CONSOLE_HANDLER_NAME)
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    return logger


def set_console_level(level: int) -> None:
    """Change how much of the log reaches stderr, e.g. for ``--verbose``."""
    for handler in log.handlers:
        if handler.get_name() == CONSOLE_HANDLER_NAME:
            handler.setLevel(level)


log = _configure_logging()
log.debug("Logger initialized for the 'invoice_guard' package.")
