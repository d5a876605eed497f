# src/solana_exporter/logging_util.py
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, Optional

Json = Dict[str, Any]

# Loggers that would otherwise log one line per scrape.
_NOISY_LOGGERS = ("uvicorn.access",)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _dumps(payload: Json) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


class JsonLineFormatter(logging.Formatter):
    """Renders every record as one JSON object per line.

    Messages produced by `log_event` are already JSON objects and pass through
    untouched; anything else is wrapped with its level and logger name.
    """

    def format(self, record: logging.LogRecord) -> str:
        msg = record.getMessage()
        if getattr(record, "solex_event", False) and not record.exc_info:
            return msg

        payload: Json = {
            "ts_ms": int(record.created * 1000),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": msg,
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return _dumps(payload)


def configure_structured_logging(level_name: Optional[str] = None) -> None:
    """Send every log record to stderr as a JSON line.

    The level comes from `level_name`, else SOLEX_LOG_LEVEL, else INFO.
    Repeated calls only adjust the level.
    """
    raw = level_name or os.environ.get("SOLEX_LOG_LEVEL") or "INFO"
    level = logging.getLevelName(raw.strip().upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    if any(isinstance(h.formatter, JsonLineFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLineFormatter())
    root.handlers = [handler]


def log_event(logger: logging.Logger, event: str, **fields: Any) -> None:
    """Log a named event with its fields as one JSON object.

    Field values JSON cannot represent are rendered with `str`.
    """
    payload: Json = dict(fields)
    payload["ts_ms"] = _now_ms()
    payload["event"] = str(event)
    logger.info(_dumps(payload), extra={"solex_event": True})
