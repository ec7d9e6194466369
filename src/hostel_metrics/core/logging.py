"""Logging setup shared by the command-line scripts."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILE_NAME = "hostel_metrics.log"
NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(
    level: str,
    log_dir: Path,
    *,
    log_file: str = LOG_FILE_NAME,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> Path:
    """Send records to stderr and ``log_dir/log_file``; returns the log file path.

    HTTP transport loggers are capped at WARNING so per-request lines do not
    drown out fetch progress.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / log_file

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_path, encoding="utf-8"),
        ],
        force=True,
    )
    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
    return log_path
