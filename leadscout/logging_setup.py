# leadscout/logging_setup.py
"""
Logging configuration for leadscout.
Console output goes through rich; an optional rotating file log is kept for
unattended (cron / timer driven) rotation runs.
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler


def setup_logging(
    verbose: bool = False,
    log_file: Optional[Path] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Configure the `leadscout` logger. Safe to call more than once."""
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger("leadscout")
    logger.setLevel(level)

    if logger.handlers:
        return logger

    console_handler = RichHandler(rich_tracebacks=True, show_path=False)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s.%(funcName)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(file_handler)

    return logger
