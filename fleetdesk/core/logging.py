import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Optional

from fleetdesk.core.context import UNSET, get_request_id, get_subject_id
from fleetdesk.core.settings import settings

AUDIT_LOGGER_NAME = "fleetdesk.audit"

# Structured keys callers may pass through ``extra=`` on review outcomes.
STRUCTURED_FIELDS = ("event", "object_id", "organization", "outcome", "succeeded", "failed")

_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


class RequestContextFilter(logging.Filter):
    """Stamp every record with the operator and request it belongs to."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.subject_id = get_subject_id()
        record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``stream_label`` separates audit from transactional output."""

    def __init__(self, stream_label: str = "transactional") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "stream": self.stream_label,
            "subject_id": getattr(record, "subject_id", UNSET),
            "request_id": getattr(record, "request_id", UNSET),
        }
        for key in STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _stdout_handler(formatter: str, level: str) -> dict:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
        "stream": "ext://sys.stdout",
    }


def configure_logging(level: Optional[str] = None) -> None:
    log_level = (level or settings.log_level).upper()
    loggers = {
        "": {"handlers": ["transactional"], "level": log_level, "propagate": False},
        AUDIT_LOGGER_NAME: {"handlers": ["audit"], "level": log_level, "propagate": False},
        # request lines from the backend client are noise at INFO
        "httpx": {"handlers": ["transactional"], "level": "WARNING", "propagate": False},
    }
    for name in _SERVER_LOGGERS:
        loggers[name] = {"handlers": ["transactional"], "level": log_level, "propagate": False}

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": {
                "transactional_json": {"()": JsonFormatter, "stream_label": "transactional"},
                "audit_json": {"()": JsonFormatter, "stream_label": "audit"},
            },
            "handlers": {
                "transactional": _stdout_handler("transactional_json", log_level),
                "audit": _stdout_handler("audit_json", log_level),
            },
            "loggers": loggers,
        }
    )
    logging.getLogger(__name__).info(
        "Logging configured for environment=%s backend=%s",
        settings.environment,
        settings.backend_api_url,
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER_NAME)
