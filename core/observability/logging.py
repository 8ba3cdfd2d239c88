"""
Structured Logging with Correlation IDs

Every record carries the ids of whatever the hub is working on:
- integration_id / job_id / job_type: an integration and its sync job
- webhook_id / delivery_id / event_type: a webhook delivery attempt
- workflow_id / activity_name: the Temporal execution driving the work

Ids live in a ContextVar, so concurrent tasks in one event loop keep their
own context.

Usage:
    from core.observability.logging import get_logger, with_correlation

    logger = get_logger(__name__)

    with with_correlation(integration_id=7, job_id=42):
        logger.info("Sync started", extra_fields={"options": 2})
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Union


# =============================================================================
# Correlation Context
# =============================================================================

@dataclass(frozen=True)
class CorrelationContext:
    integration_id: Optional[int] = None
    job_id: Optional[int] = None
    job_type: Optional[str] = None
    webhook_id: Optional[int] = None
    delivery_id: Optional[int] = None
    event_type: Optional[str] = None
    workflow_id: Optional[str] = None
    activity_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Set fields only."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def prefix(self) -> str:
        parts = []
        for label, value in (
            ("int", self.integration_id),
            ("job", self.job_id),
            ("wh", self.webhook_id),
            ("dlv", self.delivery_id),
        ):
            if value is not None:
                parts.append(f"{label}:{value}")
        if self.workflow_id:
            parts.append(self.workflow_id[:12])
        return "/".join(parts) or "-"


_correlation_context: ContextVar[CorrelationContext] = ContextVar(
    "hub_correlation_context",
    default=CorrelationContext(),
)


def get_correlation_context() -> CorrelationContext:
    return _correlation_context.get()


@contextmanager
def with_correlation(**ids) -> Iterator[CorrelationContext]:
    """
    Layer ids over the current context for the duration of the block.

    None values are ignored, so an inner block cannot clear an outer id.

    Usage:
        with with_correlation(webhook_id=3, delivery_id=19):
            logger.info("Delivering")
    """
    ctx = replace(get_correlation_context(), **{k: v for k, v in ids.items() if v is not None})
    token = _correlation_context.set(ctx)
    try:
        yield ctx
    finally:
        _correlation_context.reset(token)


# =============================================================================
# Formatters
# =============================================================================

def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line:

    {"timestamp": "2024-03-01T12:00:00.123456+00:00", "level": "INFO",
     "logger": "webhooks.manager", "message": "Delivery succeeded",
     "webhook_id": 3, "delivery_id": 19, "status": 200}
    """

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "timestamp": _record_time(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **get_correlation_context().to_dict(),
            **getattr(record, "extra_fields", {}),
        }
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    2024-03-01 12:00:00 [INFO ] webhooks.manager [wh:3/dlv:19]: Delivery succeeded status=200
    """

    def format(self, record: logging.LogRecord) -> str:
        line = (
            f"{_record_time(record):%Y-%m-%d %H:%M:%S} [{record.levelname:5}] {record.name} "
            f"[{get_correlation_context().prefix()}]: {record.getMessage()}"
        )
        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            line += " " + " ".join(f"{k}={v}" for k, v in extra_fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# =============================================================================
# Logger
# =============================================================================

class CorrelatedLogger(logging.LoggerAdapter):
    """Logger adapter accepting `extra_fields={...}` on every call.

    The fields land on the record as `record.extra_fields` (always a dict)
    and are rendered by both formatters.
    """

    def __init__(self, logger: logging.Logger):
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        extra["extra_fields"] = dict(kwargs.pop("extra_fields", None) or {})
        kwargs["extra"] = extra
        return msg, kwargs


_loggers: Dict[str, CorrelatedLogger] = {}
_configured = False

HUB_LOGGERS = (
    "activities", "workflows", "workers", "api", "core",
    "integrations", "webhooks", "transform", "connectors",
)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    json_format: bool = False,
    include_temporal: bool = True,
):
    """
    Install one stdout handler on the root logger. Idempotent.

    Args:
        level: Level for the hub's loggers (int or name, e.g. "DEBUG")
        json_format: StructuredFormatter when True, HumanReadableFormatter otherwise
        include_temporal: Keep temporalio at INFO so workflow events show
    """
    global _configured
    if _configured:
        return

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    for name in HUB_LOGGERS:
        logging.getLogger(name).setLevel(level)

    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    if include_temporal:
        logging.getLogger("temporalio").setLevel(logging.INFO)

    _configured = True


def get_logger(name: str) -> CorrelatedLogger:
    """Correlated logger for `name` (typically __name__)."""
    if name not in _loggers:
        _loggers[name] = CorrelatedLogger(logging.getLogger(name))
    return _loggers[name]


# =============================================================================
# Activity Helpers
# =============================================================================

def log_activity_start(activity_name: str, **fields):
    get_logger(f"activities.{activity_name}").info(
        f"Activity started: {activity_name}", extra_fields=fields
    )


def log_activity_complete(activity_name: str, duration_ms: Optional[float] = None, **fields):
    if duration_ms is not None:
        fields = {"duration_ms": round(duration_ms, 1), **fields}
    get_logger(f"activities.{activity_name}").info(
        f"Activity completed: {activity_name}", extra_fields=fields
    )


def log_activity_error(activity_name: str, error: str, **fields):
    get_logger(f"activities.{activity_name}").error(
        f"Activity failed: {activity_name} - {error}", extra_fields=fields
    )
