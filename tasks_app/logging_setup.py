"""
Logging configuration for the task manager.
"""

import logging
import sys
from pathlib import Path


class _ThirdPartyNoiseFilter(logging.Filter):
    """Keep tasks_app logs, let uvicorn through, and quiet everything else below WARNING."""

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name.startswith("tasks_app") or name.startswith("uvicorn"):
            return True
        # SQLAlchemy engine echo is logged at INFO.
        if name.startswith("sqlalchemy.engine"):
            return record.levelno >= logging.INFO
        return record.levelno >= logging.WARNING


def setup_logging(level: str = "INFO", log_file: str | Path | None = None) -> None:
    """
    Configure root logging with a console handler and an optional file handler.

    Call this once at startup, before the first log record is emitted.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ...).
        log_file: If given, every record at DEBUG and up is also written here.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    for handler in list(root.handlers):
        root.removeHandler(handler)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(fmt)
    console.addFilter(_ThirdPartyNoiseFilter())
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(path), encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    logging.captureWarnings(True)
