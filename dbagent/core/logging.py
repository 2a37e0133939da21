"""
Logging setup — console plus a daily log file.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path


def setup_logging(
    log_dir: Path | None = None,
    console_level: int | str = logging.WARNING,
    file_level: int | str = logging.DEBUG,
) -> logging.Logger:
    """
    Setup dbagent logging.

    Args:
        log_dir: Directory for log files (default: ~/.dbagent/logs)
        console_level: Minimum level for console output
        file_level: Minimum level for file output

    Returns:
        The configured "dbagent" logger
    """
    log_dir = (log_dir or (Path.home() / ".dbagent" / "logs")).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("dbagent")
    logger.setLevel(logging.DEBUG)

    # Clear existing handlers
    logger.handlers = []

    # Console handler (minimal output)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(console_handler)

    # File handler (detailed output)
    log_file = log_dir / f"dbagent_{datetime.now().strftime('%Y%m%d')}.log"
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(file_handler)

    logger.info(f"Logging initialized. File: {log_file}")

    return logger
