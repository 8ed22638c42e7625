# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Structured Logging — JSON (or plain text) records carrying session context.

Context travels on the record as attributes, either via
logger.info(..., extra={"phase": ...}) or through a SessionLogger bound
to one session.
"""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, MutableMapping, Optional, Tuple

CONTEXT_FIELDS = ("trace_id", "project_id", "session_id", "skill", "phase")


def _context_of(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None)
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
            **_context_of(record),
        }
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local runs: `LEVEL module [k=v ...] message`."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = " ".join(f"{k}={v}" for k, v in _context_of(record).items())
        line = f"{record.levelname:<7} {record.name} "
        if ctx:
            line += f"[{ctx}] "
        line += record.getMessage()
        if record.exc_info and record.exc_info[0]:
            line += "\n" + self.formatException(record.exc_info)
        return line


class SessionLogger(logging.LoggerAdapter):
    """Stamps session_id / project_id on every record; explicit extra wins."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def session_logger(
    name: str, session_id: str, project_id: Optional[str] = None,
) -> SessionLogger:
    extra = {"session_id": session_id}
    if project_id:
        extra["project_id"] = project_id
    return SessionLogger(logging.getLogger(name), extra)


def setup_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Route the root logger to stdout with the chosen formatter."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(TextFormatter() if fmt == "text" else StructuredFormatter())

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)
