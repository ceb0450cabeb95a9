"""
Structured logging for the reconciliation engine.

structlog is configured once on import (console output by default, JSON when
LOG_JSON is set). Request-scoped identifiers live in context variables and
are merged into every event:

- trace_id: one HTTP request, taken from X-Request-Id or generated
- project_id / meeting_id: the record being worked on
- user_id: the acting user

so a meeting's log lines can be followed from the request through
validation, reconciliation and commit.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Generator

import structlog
from structlog.types import Processor

from .config import config

CONTEXT_FIELDS = ('trace_id', 'project_id', 'meeting_id', 'user_id')

_context: dict[str, ContextVar[str | None]] = {
    name: ContextVar(name, default=None) for name in CONTEXT_FIELDS
}


def get_context() -> dict[str, str]:
    """Identifiers currently bound; unset ones are left out."""
    bound = {}
    for name, var in _context.items():
        value = var.get()
        if value is not None:
            bound[name] = value
    return bound


def get_trace_id() -> str | None:
    return _context['trace_id'].get()


def add_context_info(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Processor merging bound identifiers; values logged explicitly win."""
    for name, value in get_context().items():
        event_dict.setdefault(name, value)
    return event_dict


def configure_logging(
    json_output: bool | None = None,
    log_level: str | None = None,
) -> None:
    """
    Configure structlog for the application.

    Args:
        json_output: JSON lines when True, pretty console when False
                     (defaults to config.LOG_JSON)
        log_level: Override log level (defaults to config.LOG_LEVEL)
    """
    if json_output is None:
        json_output = config.LOG_JSON
    level = log_level or config.LOG_LEVEL
    level_num = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format='%(message)s',
        stream=sys.stdout,
        level=level_num,
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_context_info,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt='iso'),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def logging_context(**identifiers: str | None) -> Generator[None, None, None]:
    """
    Bind identifiers for the duration of a block; None leaves a field as is.

    Usage:
        with logging_context(meeting_id=str(meeting.id), project_id=str(meeting.project_id)):
            logger.info('service.submit_started')
    """
    unknown = set(identifiers) - set(CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"Unknown logging context field(s): {', '.join(sorted(unknown))}")

    tokens = [
        (_context[name], _context[name].set(value))
        for name, value in identifiers.items()
        if value is not None
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class PipelineTimer:
    """
    Wall-clock durations of the stages of one submission.

    Usage:
        timer = PipelineTimer()
        with timer.stage('validation'):
            ...
        logger.info('service.submit_committed', **timer.summary())
    """

    def __init__(self):
        self.stages: dict[str, float] = {}
        self.start_time: float = time.perf_counter()

    @contextmanager
    def stage(self, name: str) -> Generator[None, None, None]:
        """Time a stage; recorded even when the block raises."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.stages[name] = (time.perf_counter() - started) * 1000

    @property
    def total_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000

    def summary(self) -> dict[str, Any]:
        return {
            'total_ms': round(self.total_ms, 2),
            'stages': {k: round(v, 2) for k, v in self.stages.items()},
        }


configure_logging()
