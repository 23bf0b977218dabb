from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Substrings of event keys whose string values are masked
SECRET_KEY_MARKERS = ("password", "secret", "token", "api_key", "apikey", "authorization")

_TRUTHY = {"1", "true", "yes", "on"}


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind a correlation id (a fresh uuid4 when none is given) to this context."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def _tag_and_mask(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    cid = correlation_id_var.get()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    for key, value in event_dict.items():
        if isinstance(value, str) and len(value) > 4:
            if any(marker in key.lower() for marker in SECRET_KEY_MARKERS):
                event_dict[key] = f"{value[:2]}***{value[-2:]}"
    return event_dict


def _configure_structlog(log_level: str, *, json_output: bool, development_mode: bool) -> None:
    tail: list
    if development_mode or not json_output:
        tail = [structlog.dev.ConsoleRenderer(colors=development_mode)]
    else:
        tail = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _tag_and_mask,
            *tail,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


_configure_structlog(
    os.getenv("LOG_LEVEL", "INFO"),
    json_output=os.getenv("LOG_JSON", "true").lower() in _TRUTHY,
    development_mode=os.getenv("LOG_DEV_MODE", "false").lower() in _TRUTHY,
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_build_trace(flow_id: Optional[str], trace: list, logger: Optional[Any] = None) -> None:
    """Log the order in which a build instantiated its nodes."""
    log = logger or get_logger("build")
    log.info("build_trace", flow_id=flow_id, trace=trace)
