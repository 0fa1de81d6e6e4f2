"""Process-wide logging setup used by the CLI entrypoints."""

from __future__ import annotations

import logging

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the package logger."""
    package_logger = logging.getLogger("regime_dca")
    package_logger.setLevel(level)
    if any(getattr(handler, "_regime_dca", False) for handler in package_logger.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    handler._regime_dca = True  # type: ignore[attr-defined]
    package_logger.addHandler(handler)
