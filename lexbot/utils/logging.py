from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone

from lexbot.config import settings

_URL_RE = re.compile(r"https?://\S+")

_RESERVED = set(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Render records as one JSON object per line.

    Structured context travels in ``extra={"extra_fields": {...}}`` and is
    flattened into the top-level object next to ``event``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        fields = getattr(record, "extra_fields", None)
        if isinstance(fields, dict):
            payload.update(fields)
        for key, value in record.__dict__.items():
            if key not in _RESERVED and key != "extra_fields" and key not in payload:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


_configured = False


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger("lexbot")
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    _configured = True


def get_logger(name: str) -> logging.Logger:
    _configure_root()
    return logging.getLogger(name)


def mask_address(address: str | None) -> str:
    """Keep only the last four digits of a phone-style channel address."""
    if not address:
        return ""
    digits = "".join(ch for ch in address if ch.isdigit())
    if len(digits) <= 4:
        return "***"
    return "***" + digits[-4:]


def redact_urls(text: str) -> str:
    """Replace every http(s) URL in ``text``; signed URLs carry their credential in the query."""
    return _URL_RE.sub("<url>", text)


__all__ = ["get_logger", "mask_address", "redact_urls", "JsonFormatter"]
