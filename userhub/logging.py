from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Set per request by the HTTP middleware from X-Request-ID
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Substrings of field names whose values never reach the log output intact
_SENSITIVE_KEYS = ("password", "secret", "token", "authorization")
_EMAIL_KEYS = ("email",)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind ``correlation_id`` (or a fresh UUID) to the current context and return it."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _mask_secret(value: str) -> str:
    if len(value) <= 8:
        return "***"
    return f"{value[:2]}***{value[-2:]}"


def _mask_email(value: str) -> str:
    local, sep, domain = value.partition("@")
    if not sep:
        return _mask_secret(value)
    return f"{local[:1]}***@{domain}"


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def _redact_sensitive(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Mask credential values and email local parts.

    Tokens and passwords keep at most two characters at each end; emails keep
    their domain so failed logins can still be grouped by provider.
    """
    for key, value in event_dict.items():
        if not isinstance(value, str):
            continue
        lower_key = key.lower()
        if any(marker in lower_key for marker in _SENSITIVE_KEYS):
            event_dict[key] = _mask_secret(value)
        elif any(marker in lower_key for marker in _EMAIL_KEYS):
            event_dict[key] = _mask_email(value)
    return event_dict


def configure_logging(
    log_level: Optional[str] = None,
    *,
    json_output: Optional[bool] = None,
    dev_mode: Optional[bool] = None,
) -> None:
    """(Re)configure structlog.

    Unset arguments fall back to ``LOG_LEVEL`` (default INFO), ``LOG_JSON``
    (default true) and ``LOG_DEV_MODE`` (default false). Dev mode, or JSON
    turned off, selects the console renderer.
    """
    level_name = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = _env_flag("LOG_JSON", True)
    if dev_mode is None:
        dev_mode = _env_flag("LOG_DEV_MODE", False)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_correlation_id,
        _redact_sensitive,
        structlog.processors.StackInfoRenderer(),
    ]
    if dev_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=dev_mode))
    else:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level_name, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
