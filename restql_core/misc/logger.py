"""
RestQL library containing logging helper functionality
"""

import logging
from typing import Optional, Union


def enforce_logger(logger: Optional[logging.Logger] = None, fallback: Optional[str] = None) -> logging.Logger:
    """
    Enforce availability of a working logger

    :param logger: logger given by the caller, returned unchanged when valid
    :param fallback: name of the logger to use when the caller gave none;
        without a fallback name, a warning about the missing logger is emitted
    :raises TypeError: when something other than a logger was given
    """

    if logger is not None and isinstance(logger, logging.Logger):
        return logger
    elif logger is not None:
        raise TypeError(f"Expected 'logging.Logger', got {type(logger)}")
    if fallback is not None:
        return logging.getLogger(fallback)
    log = logging.getLogger(__name__)
    log.warning("No logger specified for function call; using defaults.")
    return log


class MinimumLevelFilter(logging.Filter):
    """
    Logging filter that drops records of the named logger (and its children) below a level

    Records of all other loggers pass unchanged. This is used to keep
    the statement echoing of ``sqlalchemy.engine`` out of the log file.

    :param name: name of the filtered logger
    :param level: lowest level (name or number) of records that pass
    """

    def __init__(self, name: str = "", level: Union[int, str] = logging.INFO):
        super().__init__(name)
        self.level = logging.getLevelName(level) if isinstance(level, str) else level

    def filter(self, record: logging.LogRecord) -> bool:
        if super().filter(record):
            return record.levelno >= self.level
        return True
