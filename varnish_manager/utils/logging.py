"""Logging setup for CLI and installation runs."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
PACKAGE_LOGGER = "varnish_manager"


def install_log_path(log_dir: Path, started_at: Optional[datetime] = None) -> Path:
    """Return the per-run installation log path."""
    stamp = (started_at or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return log_dir / f"varnish_hitch_install_{stamp}.log"


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Configure root logging to stderr and, optionally, an append-only file."""
    handlers: list = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def attach_run_log(log_file: Path) -> logging.Handler:
    """Attach a file handler for one installation run and return it.

    The handler sits on the package logger, which is lowered to INFO if needed
    so step records reach the file whatever the root level is.
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if package_logger.getEffectiveLevel() > logging.INFO:
        package_logger.setLevel(logging.INFO)
    package_logger.addHandler(handler)
    return handler


def detach_run_log(handler: logging.Handler) -> None:
    """Remove and close a handler returned by attach_run_log."""
    logging.getLogger(PACKAGE_LOGGER).removeHandler(handler)
    handler.close()
