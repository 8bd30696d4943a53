"""Structured logging for agentic-defi.

Library modules log through ``logging.getLogger(__name__)`` with
%-style messages.  :func:`setup_logging` routes those records through a
structlog processor chain rendered as JSON (production) or console
(development).

Each execution gets a trace ID.  :func:`bind_execution` sets it together
with the execution and strategy IDs, so every line the planner, executor
and recorder emit for one execution can be correlated.
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any

import structlog

SERVICE_NAME = "agentic-defi"

_trace_id: ContextVar[str] = ContextVar("trace_id", default="")


def get_trace_id() -> str:
    """Current trace ID, creating one if unset."""
    tid = _trace_id.get()
    if not tid:
        tid = new_trace_id()
    return tid


def set_trace_id(trace_id: str) -> None:
    _trace_id.set(trace_id)


def new_trace_id() -> str:
    tid = uuid.uuid4().hex
    _trace_id.set(tid)
    return tid


def bind_execution(
    execution_id: str,
    strategy_id: str | None = None,
    source: str | None = None,
) -> str:
    """Start a new trace for an execution and bind its IDs to the context.

    Returns the new trace ID.
    """
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        execution_id=execution_id,
        **{k: v for k, v in (("strategy_id", strategy_id), ("source", source)) if v},
    )
    return new_trace_id()


def clear_execution() -> None:
    structlog.contextvars.clear_contextvars()
    _trace_id.set("")


def _add_trace_id(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    event_dict["trace_id"] = get_trace_id()
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(level: str = "INFO", format: str = "json") -> None:
    """Configure the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        format: ``"json"`` or ``"console"``.
    """
    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _add_trace_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    renderers: list[Any] = (
        [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        if format == "json"
        else [structlog.dev.ConsoleRenderer()]
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *renderers,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
