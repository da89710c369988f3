from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

SERVICE_NAME = "mbti-assess"

# Assessment fields stamped on every record logged while a request is handled
_CONTEXT: ContextVar[Optional[Dict[str, Any]]] = ContextVar("assessment_context", default=None)
_CONTEXT_FIELDS = ("session_id", "methodology")

_STANDARD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


def bind_context(**fields: Any) -> None:
    current = dict(_CONTEXT.get() or {})
    current.update({k: v for k, v in fields.items() if k in _CONTEXT_FIELDS})
    _CONTEXT.set(current)


def set_session_id(session_id: Optional[str]) -> None:
    bind_context(session_id=session_id)


def clear_context() -> None:
    _CONTEXT.set(None)


class AssessmentContextFilter(logging.Filter):
    """Copies the bound session id and methodology onto the record unless extra= already set them."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _CONTEXT.get() or {}
        for field in _CONTEXT_FIELDS:
            if getattr(record, field, None) is None:
                setattr(record, field, context.get(field) or "-")
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="seconds"),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS or key.startswith("_"):
                continue
            if key in _CONTEXT_FIELDS and value == "-":
                continue
            try:
                json.dumps(value)
                payload[key] = value
            except TypeError:
                payload[key] = str(value)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_logs: bool = True) -> None:
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(AssessmentContextFilter())
    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        # Local development: one readable line per record
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-7s [%(session_id)s %(methodology)s] %(name)s: %(message)s"
        ))
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
