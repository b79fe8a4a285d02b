"""Structured JSON logging for the personalization service."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

ROOT_LOGGER = "bookhaven_personalize"


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if hasattr(record, "data"):
            entry["data"] = record.data  # type: ignore[attr-defined]
        if record.exc_info and record.exc_info[1]:
            entry["error"] = str(record.exc_info[1])
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(log_dir: Path | None = None, level: int | str = logging.INFO) -> logging.Logger:
    """Configure the package logger.

    Args:
        log_dir: Directory for a JSON-lines log file. If None, logs to stderr only.
        level: Logging level, as a number or a name such as "DEBUG".

    Returns:
        The package root logger.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level if isinstance(level, int) else level.upper())

    if logger.handlers:
        return logger

    fmt = JSONFormatter()

    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_dir / "personalize.jsonl", encoding="utf-8")
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    logger.addHandler(sh)

    logger.propagate = False
    return logger
