"""Logging setup for compliance runs.

Uses standard library logging. Each record is written to stdout either as one
JSON object per line (the default, easy to search in CI logs) or as a plain
text line with ``key=value`` extras appended.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

# Attributes every LogRecord carries; anything else was passed via `extra=`.
_STANDARD_RECORD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_RECORD_ATTRS and not key.startswith("_")
    }


class JsonFormatter(logging.Formatter):
    """Render a record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = record_extras(record)
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines: ``time level logger: message key=value ...``."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        line = super().format(record)
        extra = record_extras(record)
        if not extra:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in sorted(extra.items()))
        first, sep, rest = line.partition("\n")
        return f"{first} {pairs}{sep}{rest}"


def configure_logging(level: str, fmt: str = "json") -> None:
    """Configure root logging for a run."""

    root = logging.getLogger()

    # Drop existing handlers so re-configuring doesn't duplicate output.
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(TextFormatter() if fmt == "text" else JsonFormatter())

    root.addHandler(handler)
    root.setLevel(level.upper())

    # PyGithub and urllib3 are chatty at DEBUG.
    for name in ("github", "urllib3"):
        logging.getLogger(name).setLevel(max(root.level, logging.INFO))
