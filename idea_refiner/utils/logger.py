import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict

ROOT_LOGGER = "idea_refiner"

LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

# Attributes every LogRecord carries; anything else arrived through `extra=`
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Structured fields can be passed either as ``extra={"extra": {...}}`` or as
    plain ``extra={"request_id": ...}`` keys; dict messages are merged in.
    """

    def _safe(self, value: Any) -> Any:
        try:
            json.dumps(value)
            return value
        except Exception:
            return str(value)

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }
        if isinstance(record.msg, dict):
            payload.update(record.msg)
        else:
            payload["message"] = record.getMessage()

        for key, value in vars(record).items():
            if key in _RESERVED or key.startswith("_"):
                continue
            if key == "extra" and isinstance(value, dict):
                payload.update(value)
            else:
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps({k: self._safe(v) for k, v in payload.items()}, ensure_ascii=False)


def get_logger(name: str = ROOT_LOGGER, level: str | None = None) -> logging.Logger:
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        root.addHandler(handler)
        root.propagate = False
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if level is not None or root.level == logging.NOTSET:
        root.setLevel(LEVELS.get(level_name, logging.INFO))
    return logging.getLogger(name)
