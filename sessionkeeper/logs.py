# -*- coding: utf-8 -*-
"""Log lines in the ``[INFO] message`` shape shown in the log pane."""

from __future__ import annotations
import logging

LOGGER_NAME = "sessionkeeper"

_TAGS = {
    logging.DEBUG: "DBG ",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERR ",
    logging.CRITICAL: "ERR ",
}


class LogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        tag = _TAGS.get(record.levelno, record.levelname[:4])
        msg = f"[{tag}] {record.getMessage()}"
        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)
        return msg


def configure_logging(level: str = "INFO") -> logging.Logger:
    log = logging.getLogger(LOGGER_NAME)
    log.setLevel(level.upper())
    if not any(getattr(h, "_sessionkeeper", False) for h in log.handlers):
        h = logging.StreamHandler()
        h.setFormatter(LogFormatter())
        h._sessionkeeper = True
        log.addHandler(h)
    return log


def mask(secret: str) -> str:
    return f"{secret[:4]}********" if secret else "-"
