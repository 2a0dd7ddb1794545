"""
Structured logging with correlation ids.

Every line logged inside ``with_correlation(...)`` carries the ids of the
aggregates being worked on:

- order_sheet_id, sales_order_id, shipment_id, document_id
- workflow_id / activity_name for Temporal executions
- actor, the user that requested the action

Usage:
    from core.observability.logging import get_logger, with_correlation

    logger = get_logger(__name__)

    with with_correlation(order_sheet_id="OS-001", actor="OPS:ops-1"):
        logger.info("Confirming order sheet", extra_fields={"items": 3})
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Any, Dict, Iterator, Optional


# =============================================================================
# Correlation Context
# =============================================================================

@dataclass(frozen=True)
class CorrelationContext:
    """Correlation ids attached to log lines of one request or workflow."""
    order_sheet_id: Optional[str] = None
    sales_order_id: Optional[str] = None
    shipment_id: Optional[str] = None
    document_id: Optional[str] = None
    workflow_id: Optional[str] = None
    activity_name: Optional[str] = None
    actor: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    def merge(self, **ids: Optional[str]) -> "CorrelationContext":
        """Copy with the given ids set; None leaves the current value."""
        return replace(self, **{k: v for k, v in ids.items() if v is not None})


_current: ContextVar[CorrelationContext] = ContextVar("fulfillment_correlation", default=CorrelationContext())


def get_correlation_context() -> CorrelationContext:
    return _current.get()


@contextmanager
def with_correlation(**ids: Optional[str]) -> Iterator[CorrelationContext]:
    """Layer correlation ids over the current context for the block.

    Works across threads and asyncio tasks since the context lives in a
    ContextVar; the previous context is restored on exit.
    """
    token = _current.set(_current.get().merge(**ids))
    try:
        yield _current.get()
    finally:
        _current.reset(token)


# =============================================================================
# Formatters
# =============================================================================

# (context attribute, prefix) pairs shown by the human-readable formatter
_SHORT_KEYS = (
    ("order_sheet_id", "os"),
    ("sales_order_id", "so"),
    ("shipment_id", "sh"),
    ("document_id", "doc"),
)


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = get_correlation_context().to_dict()
    fields.update(getattr(record, "extra_fields", None) or {})
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, then
    the correlation ids and any ``extra_fields`` passed to the call."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_record_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


class HumanReadableFormatter(logging.Formatter):
    """
    Console formatter.

    Output format:
    2024-01-09 12:00:00 [INFO ] lifecycle.service [os:OS-001/so:SO-001]: Order sheet confirmed
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_correlation_context()
        parts = [f"{prefix}:{getattr(ctx, key)}" for key, prefix in _SHORT_KEYS if getattr(ctx, key)]
        if ctx.workflow_id:
            parts.append(ctx.workflow_id[:12])

        stamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S")
        line = f"{stamp} [{record.levelname:5}] {record.name} [{'/'.join(parts) or '-'}]: {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# =============================================================================
# Logger adapter
# =============================================================================

class CorrelatedLogger(logging.LoggerAdapter):
    """Adapter accepting an ``extra_fields`` dict on every logging call.

    The fields are attached to the record and emitted by both formatters
    next to the correlation ids of the current context.
    """

    def __init__(self, logger: logging.Logger):
        super().__init__(logger, {})

    def process(self, msg, kwargs):
        fields = kwargs.pop("extra_fields", None) or {}
        extra = dict(kwargs.get("extra") or {})
        extra["extra_fields"] = fields
        kwargs["extra"] = extra
        return msg, kwargs


# =============================================================================
# Configuration
# =============================================================================

_PACKAGE_LOGGERS = ("extraction", "reconciliation", "lifecycle", "gate", "storage",
                    "activities", "workflows", "workers", "api", "services")

_loggers: Dict[str, CorrelatedLogger] = {}
_handler: Optional[logging.Handler] = None


def configure_logging(level: int = logging.INFO, json_format: bool = False, include_temporal: bool = True):
    """
    Install the fulfillment log handler on the root logger.

    Calling again replaces the handler installed by the previous call, so an
    entry point can switch level or format after modules have already
    logged with the defaults.

    Args:
        level: Logging level
        json_format: Emit JSON lines instead of human-readable lines
        include_temporal: Also set the Temporal SDK loggers to ``level``
    """
    global _handler

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)

    _handler = logging.StreamHandler(sys.stdout)
    _handler.setLevel(level)
    _handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())
    root.addHandler(_handler)
    root.setLevel(level)

    for name in _PACKAGE_LOGGERS:
        logging.getLogger(name).setLevel(level)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    if include_temporal:
        logging.getLogger("temporalio").setLevel(level)


def get_logger(name: str) -> CorrelatedLogger:
    """Return the correlated logger for ``name``, installing default
    console logging on first use."""
    if _handler is None:
        configure_logging()
    logger = _loggers.get(name)
    if logger is None:
        logger = _loggers[name] = CorrelatedLogger(logging.getLogger(name))
    return logger
