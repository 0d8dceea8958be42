"""Logging configuration built around structlog JSON logging."""

from __future__ import annotations

import logging
import logging.config
import os
import re
from pathlib import Path
from typing import Iterable

import structlog

from .config.loader import HOME_ENV

_LOGGING_INITIALISED = False


def _default_log_dir() -> Path:
    env_root = os.environ.get(HOME_ENV)
    if env_root:
        return Path(env_root).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def _group_slug(label: str, name: str) -> str:
    raw = f"{label}-{name}"
    return re.sub(r"[^0-9A-Za-z_-]+", "_", raw.strip()).strip("_") or "group"


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Configure structlog + stdlib handlers and return application logger."""

    global _LOGGING_INITIALISED
    log_dir = _default_log_dir()
    error_log = log_dir / "error.log"
    discovery_log = log_dir / "discovery.log"
    groups_dir = log_dir / "groups"
    groups_dir.mkdir(parents=True, exist_ok=True)
    error_log.touch(exist_ok=True)
    discovery_log.touch(exist_ok=True)

    if not _LOGGING_INITIALISED:
        level = "DEBUG" if verbose else "INFO"
        logging.config.dictConfig(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "formatters": {
                    "plain": {
                        "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                        "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    }
                },
                "handlers": {
                    "console": {
                        "class": "logging.StreamHandler",
                        "level": level if verbose else "WARNING",
                        "formatter": "plain",
                    },
                    "discovery_file": {
                        "class": "logging.FileHandler",
                        "level": "INFO",
                        "filename": str(discovery_log),
                        "formatter": "plain",
                    },
                    "error_file": {
                        "class": "logging.FileHandler",
                        "level": "ERROR",
                        "filename": str(error_log),
                        "formatter": "plain",
                    },
                },
                "loggers": {
                    "ct_discoverer": {
                        "handlers": ["console", "discovery_file", "error_file"],
                        "level": level,
                        "propagate": False,
                    },
                },
            }
        )

        # 结构化事件统一转交给 stdlib logging，由 handler 层负责 JSON 输出
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
        _LOGGING_INITIALISED = True
    return structlog.get_logger("ct_discoverer")


def group_logger(label: str, name: str, verbose: bool = False) -> structlog.BoundLogger:
    """Return a logger bound to one group and ensure its file handler exists."""

    configure_logging(verbose)
    slug = _group_slug(label, name)
    group_log_path = _default_log_dir() / "groups" / f"{slug}.log"
    group_log_path.parent.mkdir(parents=True, exist_ok=True)

    logger_name = f"ct_discoverer.group.{slug}"
    py_logger = logging.getLogger(logger_name)
    if not any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == str(group_log_path)
        for handler in py_logger.handlers
    ):
        file_handler = logging.FileHandler(group_log_path, encoding="utf-8")
        global_logger = logging.getLogger("ct_discoverer")
        if global_logger.handlers:
            file_handler.setFormatter(global_logger.handlers[0].formatter)
        file_handler.setLevel(logging.INFO)
        py_logger.addHandler(file_handler)

    return structlog.get_logger(logger_name).bind(label=label, group=name)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    """Return the last N lines from a log file."""

    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        lines = stream.readlines()
    return lines[-line_count:]


def log_path(label: str | None = None, name: str | None = None) -> Path:
    """Path of the global log, or of one group's log when both parts are given."""

    if label and name:
        return _default_log_dir() / "groups" / f"{_group_slug(label, name)}.log"
    return _default_log_dir() / "discovery.log"


def available_group_logs() -> Iterable[Path]:
    """Yield available group log file paths."""

    groups_dir = _default_log_dir() / "groups"
    if not groups_dir.exists():
        return []
    return sorted(p for p in groups_dir.glob("*.log"))


__all__ = [
    "available_group_logs",
    "configure_logging",
    "group_logger",
    "log_path",
    "tail_log",
]
