from __future__ import annotations
"""forwarder/core/logging.py
~~~~~~~~~~~~~~~~~~~~~~~~~~~
Configuration logs (format `pretty` ou `json`).
"""
import json
import logging

PRETTY_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Attributs standards d'un LogRecord : tout le reste vient de `extra={...}`.
_RESERVED = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED:
                data[key] = value
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


def _as_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    return logging.getLevelName(str(level).strip().upper()) if level else logging.INFO


def setup_logging(level: int | str = logging.INFO, fmt: str = "pretty") -> None:
    lvl = _as_level(level)
    if not isinstance(lvl, int):
        lvl = logging.INFO
    handler = logging.StreamHandler()
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(PRETTY_FORMAT))
    logging.basicConfig(level=lvl, handlers=[handler], force=True)
