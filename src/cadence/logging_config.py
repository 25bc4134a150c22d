"""
Logging setup for Cadence.

Environment:
- LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (default INFO)
- LOG_FORMAT: simple, detailed or json (default simple)

Logs go to stderr so stdout stays free for streamed model output.
"""

import os
import sys
import json
import logging
from datetime import datetime
from typing import Optional

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

TEXT_FORMATS = {
    "simple": ("%(levelname)s - %(message)s", None),
    "detailed": (
        "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
        "%Y-%m-%d %H:%M:%S",
    ),
}

# Chatty at INFO; only their warnings are interesting here
QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "asyncio")

# Record attributes copied into JSON output when present (pass via ``extra=``)
CONTEXT_FIELDS = ("task_id", "correlation_id", "turn", "tool")


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "where": f"{record.funcName}:{record.lineno}",
        }
        entry.update(
            (name, getattr(record, name)) for name in CONTEXT_FIELDS if getattr(record, name, None) is not None
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def build_formatter(format_style: str) -> logging.Formatter:
    if format_style == "json":
        return JSONFormatter()
    fmt, datefmt = TEXT_FORMATS.get(format_style, TEXT_FORMATS["simple"])
    return logging.Formatter(fmt=fmt, datefmt=datefmt)


def configure_logging(level: Optional[str] = None, format_style: Optional[str] = None) -> None:
    """
    Replace the root logger's handlers with a single stderr handler.

    Args:
        level: Overrides LOG_LEVEL
        format_style: Overrides LOG_FORMAT
    """
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    style = (format_style or os.getenv("LOG_FORMAT") or "simple").lower()

    if level_name not in LEVELS:
        sys.stderr.write(f"Warning: Invalid LOG_LEVEL '{level_name}', defaulting to INFO\n")
        level_name = "INFO"

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(build_formatter(style))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level_name)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.debug(f"Logging configured: level={level_name}, format={style}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
