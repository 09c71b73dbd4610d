# core/logging_setup.py
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from core.constants import APP_DIR_NAME


def setup_logging(debug: bool = False, log_dir: Path | None = None) -> Path:
    """
    Configure application-wide logging.

    - Logs to ~/.poe_trade_history/sync.log (rotating, max ~1 MB, 3 backups)
    - Also logs to console (stderr) for interactive runs

    Returns the path of the log file.
    """
    log_dir = log_dir or (Path.home() / APP_DIR_NAME)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "sync.log"

    level = logging.DEBUG if debug else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Clear existing handlers (re-running the CLI in one process, tests)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=1_000_000,  # ~1 MB
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s [%(levelname)s] %(name)s - %(message)s")
    )
    file_handler.setLevel(level)
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s - %(message)s"))
    console_handler.setLevel(level)
    root_logger.addHandler(console_handler)

    # urllib3 is chatty at DEBUG (one line per pooled connection)
    logging.getLogger("urllib3").setLevel(logging.INFO if debug else logging.WARNING)

    root_logger.info("Logging initialized")
    root_logger.info("Log file: %s", log_file)
    return log_file
