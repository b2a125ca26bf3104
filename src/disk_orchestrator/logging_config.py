"""Structured logging for Disk Orchestrator.

Two concerns live here:

- configure_logging(): one stderr handler rendering structlog events as JSON
  (production, for Log Analytics / Loki) or as console lines (interactive runs)
- workflow_context(): binds a run id and workflow fields to every event logged
  inside a workflow, including events from the tasks it spawns

stdout stays free for payloads so callers can pipe results into jq.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Optional, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

APP_NAME = "disk-orchestrator"
REDACTED = "<redacted>"

# Libraries that log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "asyncio")


def add_app_context(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict["app"] = APP_NAME
    return event_dict


def drop_authorization(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Redact bearer tokens from any ``headers`` mapping attached to an event."""
    headers = event_dict.get("headers")
    if isinstance(headers, dict) and "Authorization" in headers:
        event_dict["headers"] = {**headers, "Authorization": REDACTED}
    return event_dict


def _processors(json_output: bool) -> tuple[list[Processor], Processor]:
    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
        drop_authorization,
    ]
    if json_output:
        shared.append(structlog.processors.format_exc_info)
        return shared, structlog.processors.JSONRenderer()
    return shared, structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(
    log_level: str = "INFO",
    environment: str = "development",
    stream: Optional[TextIO] = None,
) -> None:
    """Route structlog and stdlib logging through a single handler.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        environment: "production" selects JSON output, anything else console output
        stream: Destination stream (stderr if omitted)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    json_output = environment.lower() == "production"
    shared, renderer = _processors(json_output)

    structlog.configure(
        processors=shared + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared)
    )
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "Logging configured",
        log_level=log_level,
        environment=environment,
        renderer="json" if json_output else "console",
    )


@contextmanager
def workflow_context(workflow: str, **fields: Any) -> Iterator[str]:
    """Bind ``run_id`` and ``workflow`` (plus fields) for the duration of a workflow.

    Tasks created inside the block copy the context, so fan-out units and
    pollers log under the same run id.

    Yields:
        The generated run id
    """
    run_id = uuid.uuid4().hex[:12]
    with structlog.contextvars.bound_contextvars(run_id=run_id, workflow=workflow, **fields):
        yield run_id
