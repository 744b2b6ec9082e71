"""Logging setup shared by the API service and the CLI.

On Cloud Run every record is emitted as one JSON object with a GCP
``severity`` field; locally a compact text format is used. Records logged
while serving a request carry that request's ID, including records from
upload runs started as background tasks of the request.
"""

from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

_request_id: ContextVar[str] = ContextVar("request_id", default="-")

# Libraries that log one INFO line per HTTP call to Gemini
_CHATTY_LOGGERS = ("httpx", "google_genai")


def bind_request_id(request_id: str) -> None:
    _request_id.set(request_id)


def current_request_id() -> str:
    return _request_id.get()


class RequestIdFilter(logging.Filter):
    """Copy the bound request ID onto every record as ``request_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True


class GCPJsonFormatter(JsonFormatter):
    """JSON formatter that renames ``levelname`` to Cloud Logging's ``severity``."""

    def add_fields(
        self,
        log_record: dict[str, object],
        record: logging.LogRecord,
        message_dict: dict[str, object],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        # Python level names are already valid Cloud Logging severities
        log_record["severity"] = log_record.pop("levelname", record.levelname)


def _build_formatter(json_output: bool) -> logging.Formatter:
    if json_output:
        return GCPJsonFormatter(
            fmt="%(levelname)s %(message)s %(name)s %(funcName)s %(lineno)d %(request_id)s",
            rename_fields={"name": "logger"},
        )
    return logging.Formatter(
        "%(asctime)s %(levelname)-8s [%(request_id)s] %(name)s:%(lineno)d  %(message)s",
        datefmt="%H:%M:%S",
    )


def setup_logging(*, level: str = "INFO") -> None:
    """Replace the root handlers: JSON when ``K_SERVICE`` is set, text otherwise."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler()
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(_build_formatter(bool(os.getenv("K_SERVICE"))))
    root.addHandler(handler)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))


def generate_request_id() -> str:
    return uuid.uuid4().hex[:16]
