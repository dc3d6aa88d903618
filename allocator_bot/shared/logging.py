"""
Structured logging for allocator-bot.

``configure_logging()`` runs once at process startup; modules then log through
``structlog.get_logger()``. The dispatcher wraps every delivery in
``event_context()`` so each line a handler, synchronizer, or retrying connector
emits carries the ``application_id``, ``event_type`` and ``event_id`` it was
working for, including lines logged from worker threads.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Any

import structlog

REDACTED = "[redacted]"
_SECRET_KEY_MARKERS = ("token", "authorization", "secret")


def redact_secrets(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask values logged under credential-looking keys (GitHub tokens, auth headers)."""
    for key in list(event_dict):
        if any(marker in key.lower() for marker in _SECRET_KEY_MARKERS):
            event_dict[key] = REDACTED
    return event_dict


@contextmanager
def event_context(*, application_id: str, event_type: str, event_id: str) -> Iterator[None]:
    with structlog.contextvars.bound_contextvars(
        application_id=application_id, event_type=event_type, event_id=event_id
    ):
        yield


def _installed(root: logging.Logger) -> bool:
    return any(getattr(handler, "_allocator_bot", False) for handler in root.handlers)


def configure_logging(*, level: str = "INFO", json_output: bool = False) -> None:
    """
    Route structlog and stdlib records through one stderr handler.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        json_output: JSON lines for log shipping instead of console output.

    Safe to call more than once; the handler is installed a single time and
    later calls only adjust the level.
    """
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
    ]
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer(sort_keys=True)
        if json_output
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    if not _installed(root):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
                foreign_pre_chain=pre_chain,
            )
        )
        handler._allocator_bot = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # requests' connection pool is chatty at DEBUG.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
