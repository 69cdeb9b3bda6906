"""Structured logging for debate runs.

stdlib records from the engine modules and structlog events from the
progress subscriber share one renderer, and both carry the ``run`` and
``mode`` of the debate that produced them.
"""

from __future__ import annotations

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

_SHARED_PROCESSORS: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
]


def setup_logging(*, debug: bool = False, json_output: bool = False) -> None:
    """Route stdlib logging and structlog through one stderr handler.

    stdout is left to command output.  Does nothing to the root logger
    when a handler is already installed (as ``logging.basicConfig``).
    """
    level = logging.DEBUG if debug else logging.INFO
    renderer: Any = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=False)
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_SHARED_PROCESSORS,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))
    logging.basicConfig(handlers=[handler], level=level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def new_run_id() -> str:
    return uuid.uuid4().hex[:8]


@contextmanager
def run_context(*, mode: str, run_id: str | None = None) -> Iterator[str]:
    """Bind ``run`` and ``mode`` to every log line emitted inside the block.

    Tasks started inside the block inherit the binding.
    """
    rid = run_id or new_run_id()
    with structlog.contextvars.bound_contextvars(run=rid, mode=mode):
        yield rid


def get_logger(name: str = "concord", **kwargs: Any) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name, **kwargs)
