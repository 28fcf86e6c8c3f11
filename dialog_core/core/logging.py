"""Structured logging for dialog_core.

Every log line is a structlog event. Tenant, session, user and request ids
are carried in context vars and stamped onto each event, so a single
conversation can be followed across the store, the log and the router.
JSON output by default, console output when debug is on.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

import structlog

from dialog_core.config import Settings, get_settings

# ── Context variables ────────────────────────────────────────────────

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(name, default=None)
    for name in ("request_id", "tenant_id", "session_id", "user_id")
}


@contextmanager
def log_context(**values: str | None) -> Iterator[None]:
    """Bind ids for the duration of one call; None values are skipped."""
    tokens = []
    for name, value in values.items():
        var = _CONTEXT_VARS.get(name)
        if var is None:
            raise KeyError(f"unknown log context field: {name}")
        if value is not None:
            tokens.append((var, var.set(value)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def current_context() -> dict[str, str]:
    return {name: var.get() for name, var in _CONTEXT_VARS.items() if var.get() is not None}


def _stamp_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """Add bound ids; explicit event keys win."""
    for name, value in current_context().items():
        event_dict.setdefault(name, value)
    return event_dict


# ── Setup ────────────────────────────────────────────────────────────


def setup_logging(settings: Settings | None = None) -> None:
    """Route structlog and stdlib logging through one handler. Call once per process."""
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _stamp_context,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.debug
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Client libraries log every request at INFO
    for noisy in ("httpx", "httpcore", "openai", "qdrant_client"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
