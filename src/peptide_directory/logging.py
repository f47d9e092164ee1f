import logging
import os
from typing import Optional, Union


_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _coerce_level(value: Optional[Union[str, int]]) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return _LEVELS.get(value.upper().strip(), logging.INFO)
    return logging.INFO


def _attach(logger: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Return a console logger shared by the directory services.

    - LOG_LEVEL picks the level (default INFO).
    - LOG_FILE, when set, appends the same lines to a file.
    """
    logger = logging.getLogger(f"directory.{name}")
    if getattr(logger, "_directory_configured", False):
        return logger

    level = _coerce_level(os.environ.get("LOG_LEVEL", "INFO"))
    logger.setLevel(level)
    _attach(logger, logging.StreamHandler(), level)

    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            _attach(logger, logging.FileHandler(log_file, encoding="utf-8"), level)
        except OSError:
            logger.warning("LOG_FILE %s could not be opened; continuing without file logging", log_file)

    logger.propagate = False
    setattr(logger, "_directory_configured", True)
    return logger
