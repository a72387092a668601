"""Logging helpers for the ncm_dashboard package."""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Optional

from ncm_dashboard.config import settings

ROOT_LOGGER_NAME = "ncm_dashboard"
_LOG_CONFIGURED = False


def _resolve_log_dir(log_dir: Optional[Path] = None) -> Path:
    target = log_dir or settings.LOG_DIR
    target.mkdir(parents=True, exist_ok=True)
    return target


def _configure_logging(log_dir: Optional[Path] = None) -> None:
    """Configure the package logger once with rotating file + console handlers."""
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(logging.INFO)

    try:
        directory = _resolve_log_dir(log_dir)
    except OSError as exc:
        directory = None
        root_logger.warning("Log directory unavailable, file logging disabled: %s", exc)

    if directory is not None:
        file_handler = logging.handlers.RotatingFileHandler(
            directory / "ncm_dashboard.log", maxBytes=2_000_000, backupCount=3, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(logging.INFO)
        root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.WARNING)
    root_logger.addHandler(console_handler)
    root_logger.propagate = False

    _LOG_CONFIGURED = True


def get_logger(name: str, log_dir: Optional[Path] = None) -> logging.Logger:
    """Return a logger scoped under ``ncm_dashboard``.

    Args:
        name: Suffix appended to the package logger namespace.
        log_dir: Optional override for the logging directory.
    """
    _configure_logging(log_dir)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
