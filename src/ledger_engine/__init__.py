"""Read-side reconciliation engine for customer, vendor, and stock ledgers."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


LOG_DIR_ENV = "LEDGER_ENGINE_LOG_DIR"
LOG_FILE_NAME = "ledger_engine.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_log_dir() -> Path:
    """Return the directory that receives the rotating log file.

    ``LEDGER_ENGINE_LOG_DIR`` wins when set; otherwise logs go to ``.logs``
    under the current working directory, so an installed package never writes
    next to its own modules.
    """

    configured = os.environ.get(LOG_DIR_ENV, "").strip()
    if configured:
        return Path(configured).expanduser()
    return Path.cwd() / ".logs"


def _configure_logging(name: str = __name__, log_dir: Optional[Path] = None) -> logging.Logger:
    """Attach a rotating file handler and a stderr handler to logger ``name``.

    When the log directory cannot be created or opened the logger keeps only
    the console handler.
    """

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = (log_dir if log_dir is not None else resolve_log_dir()) / LOG_FILE_NAME
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=1_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as exc:
        print(
            f"Warning: unable to initialize log file at '{log_file}': {exc}; logging to console only",
            file=sys.stderr,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


log = _configure_logging()
log.info("Logger initialized for the 'ledger_engine' package.")
