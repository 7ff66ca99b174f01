"""Capture of program log output."""

from __future__ import annotations

import itertools
import logging
import re
from typing import List

from .config import LOG_PREFIX

_QUOTED = re.compile(r'"(.*)"')
_logger_ids = itertools.count(1)


class LogCollectionHandler(logging.Handler):
    """Collects the message text of every record emitted to its logger.

    Program output arrives as ``LOG: "message"``. The prefix is dropped and,
    when the remainder carries a quoted section, only its contents are kept.
    """

    def __init__(self, level: int = logging.NOTSET):
        super().__init__(level)
        self.logs: List[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            self.handleError(record)
            return

        message = message.replace(LOG_PREFIX, "", 1)
        match = _QUOTED.search(message)
        self.logs.append(match.group(1) if match else message.strip())


def new_program_logger(name: str = "chaintest.program") -> logging.Logger:
    """Return a fresh logger for one runner's program output.

    The logger is not registered with the logging manager, so it is released
    together with the runner that owns it. Records still propagate to the
    ``name`` logger and from there to the usual handlers.
    """
    program_logger = logging.Logger(f"{name}.{next(_logger_ids)}", logging.DEBUG)
    program_logger.parent = logging.getLogger(name)
    return program_logger
