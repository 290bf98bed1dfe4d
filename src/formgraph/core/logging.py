# src/formgraph/core/logging.py
"""structlog setup shared by the engine, the storage layer and the CLI.

Engine modules log through ``structlog.get_logger(__name__)``; host
applications and libraries often use plain ``logging``. Both end up in one
stdlib handler whose ProcessorFormatter renders every record with the same
processor chain, so a remount event and a third-party warning look alike.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

_BOOKKEEPING_KEYS = ("_record", "_from_structlog")


def _drop_bookkeeping(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Strip the keys ProcessorFormatter adds for its own use."""
    for key in _BOOKKEEPING_KEYS:
        event_dict.pop(key, None)
    return event_dict


def _pre_chain() -> list[Any]:
    """Processors every record passes, whichever API emitted it."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]


def configure_logging(*, json_output: bool = False, level: str = "INFO") -> None:
    """Route structlog and stdlib logging to stderr in one format.

    Args:
        json_output: One JSON object per line instead of console rendering
        level: Root log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    pre_chain = _pre_chain()
    if json_output:
        renderer: list[Any] = [_drop_bookkeeping, structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderer = [_drop_bookkeeping, structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Tests and the CLI reconfigure repeatedly
        cache_logger_on_first_use=False,
    )

    # stderr keeps CLI stdout machine-readable
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ProcessorFormatter(processors=renderer, foreign_pre_chain=pre_chain))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.getLevelName(level.upper()))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Bound logger for ``name`` (usually ``__name__``)."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
