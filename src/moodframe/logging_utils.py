"""Logging helpers."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler


def setup_logging(log_dir: str = "logs", level: int = logging.INFO) -> tuple[logging.Logger, str]:
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "moodframe.log")

    logger = logging.getLogger("moodframe")
    logger.setLevel(level)

    if not logger.handlers:
        handler = RotatingFileHandler(log_path, maxBytes=2_000_000, backupCount=3)
        fmt = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(fmt)
        logger.addHandler(handler)

    return logger, log_path


def format_fields(**fields) -> str:
    """Render key=value pairs for one structured log line."""
    parts = []
    for key, value in fields.items():
        text = str(value)
        if " " in text:
            text = f'"{text}"'
        parts.append(f"{key}={text}")
    return " ".join(parts)
