from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path
from typing import Optional


LOGGER_NAME = "canstats"
LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# chatty at INFO/DEBUG during downloads, map IO and plotting
THIRD_PARTY_LOGGERS = ("urllib3", "matplotlib", "PIL", "pyogrio", "fiona", "numexpr")


def setup_logging(
    level: str = "INFO",
    *,
    log_dir: Optional[Path] = None,
    console: bool = True,
    file: bool = True,
    capture_warnings: bool = False,
) -> Logger:
    """Configure the ``canstats`` logger for one analysis run.

    Handlers from a previous run in the same process are closed and replaced, so
    each run directory gets its own ``logs.txt``. With ``capture_warnings`` the
    ``warnings`` module (statsmodels convergence notices, pandas deprecations) is
    routed into the same handlers.
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    handlers = []
    if console:
        handlers.append(logging.StreamHandler())
    if file and log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "logs.txt", encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    logging.captureWarnings(capture_warnings)
    if capture_warnings:
        py_warnings = logging.getLogger("py.warnings")
        py_warnings.handlers = list(handlers)
        py_warnings.propagate = False

    logger.debug("Logging configured: level=%s handlers=%d", logging.getLevelName(numeric_level), len(handlers))
    return logger


__all__ = ["setup_logging", "LOGGER_NAME"]
