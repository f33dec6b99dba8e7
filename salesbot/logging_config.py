"""JSON logging for the sales bot.

Every line is one JSON object. Records logged through a participant adapter
carry ``participant`` as a top-level field so a single chat can be followed
with a plain grep; any other structured data goes under ``context``.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

SERVICE_NAME = "salesbot"
NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    def __init__(self, service: str = SERVICE_NAME):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": self.service,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        context = dict(getattr(record, "context", None) or {})
        participant = context.pop("participant", None)
        if participant is not None:
            entry["participant"] = participant
        if context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route everything through one stdout handler with the JSON formatter."""
    root = logging.getLogger()
    numeric = logging.getLevelName(level.upper())
    root.setLevel(numeric if isinstance(numeric, int) else logging.INFO)

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{SERVICE_NAME}.{name}")


class ParticipantLogger(logging.LoggerAdapter):
    """Adapter bound to one participant, with optional extra bound fields.

    Call sites may pass ``context={...}`` for per-record data; bound fields
    and per-record data are merged, per-record data winning.
    """

    def __init__(self, logger: logging.Logger, participant: str, bound: Optional[dict] = None):
        super().__init__(logger, {"participant": participant, **(bound or {})})

    @property
    def participant(self) -> str:
        return self.extra["participant"]

    def bind(self, **fields: Any) -> "ParticipantLogger":
        bound = {key: value for key, value in self.extra.items() if key != "participant"}
        bound.update(fields)
        return ParticipantLogger(self.logger, self.participant, bound)

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        record_context = kwargs.pop("context", None) or {}
        extra = dict(kwargs.get("extra") or {})
        extra["context"] = {**self.extra, **extra.get("context", {}), **record_context}
        kwargs["extra"] = extra
        return msg, kwargs


def for_participant(logger: logging.Logger, participant: str, **bound: Any) -> ParticipantLogger:
    return ParticipantLogger(logger, participant, bound)
