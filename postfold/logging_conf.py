"""Structured logging for postfold.

Events are emitted through structlog and rendered by stdlib handlers using
python-json-logger, so every line in ``logs/`` is a JSON object. Each job
additionally mirrors its events into ``logs/jobs/<job_id>.log``.
"""

from __future__ import annotations

import logging
import logging.config
import os
from pathlib import Path
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

ROOT_LOGGER = "postfold"
JOB_LOGGER_PREFIX = f"{ROOT_LOGGER}.job."
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured_for: tuple[Path, str] | None = None


def log_dir() -> Path:
    """Directory holding ``postfold.log``, ``error.log`` and ``jobs/``."""

    home = os.environ.get("POSTFOLD_HOME")
    if home:
        return Path(home).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def _file_handler(path: Path, level: str) -> dict[str, Any]:
    return {
        "class": "logging.FileHandler",
        "level": level,
        "filename": str(path),
        "encoding": "utf-8",
        "formatter": "json",
    }


def _logging_config(level: str, directory: Path) -> dict[str, Any]:
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {"()": jsonlogger.JsonFormatter, "fmt": JSON_FORMAT},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "level": level, "formatter": "json"},
            "app_file": _file_handler(directory / "postfold.log", "INFO"),
            "error_file": _file_handler(directory / "error.log", "ERROR"),
        },
        "loggers": {
            ROOT_LOGGER: {
                "handlers": ["console", "app_file", "error_file"],
                "level": level,
                "propagate": False,
            },
        },
    }


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Install handlers for the current log directory and return the app logger.

    Repeated calls are cheap; handlers are rebuilt only when the log
    directory changes or debug output is first requested.
    """

    global _configured_for
    directory = log_dir()
    level = "DEBUG" if verbose else "INFO"
    (directory / "jobs").mkdir(parents=True, exist_ok=True)

    if _configured_for is None or _configured_for[0] != directory or (
        verbose and _configured_for[1] != "DEBUG"
    ):
        logging.config.dictConfig(_logging_config(level, directory))
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _configured_for = (directory, level)
    return structlog.get_logger(ROOT_LOGGER)


def job_log_path(job_id: str) -> Path:
    return log_dir() / "jobs" / f"{job_id}.log"


def job_logger(job_id: str, verbose: bool = False) -> structlog.BoundLogger:
    """Return a logger bound to ``job_id`` that also writes the job's own file."""

    configure_logging(verbose)
    path = job_log_path(job_id)
    name = f"{JOB_LOGGER_PREFIX}{job_id}"
    std_logger = logging.getLogger(name)
    for handler in list(std_logger.handlers):
        if isinstance(handler, logging.FileHandler) and handler.baseFilename != str(path):
            std_logger.removeHandler(handler)
            handler.close()
    if not std_logger.handlers:
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setLevel(logging.INFO)
        handler.setFormatter(jsonlogger.JsonFormatter(JSON_FORMAT))
        std_logger.addHandler(handler)
    return structlog.get_logger(name).bind(job_id=job_id)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last ``line_count`` lines of ``path`` (empty if missing)."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        return stream.readlines()[-line_count:]


def available_job_logs() -> list[Path]:
    return sorted((log_dir() / "jobs").glob("*.log"))


__all__ = [
    "available_job_logs",
    "configure_logging",
    "job_log_path",
    "job_logger",
    "log_dir",
    "tail_log",
]
