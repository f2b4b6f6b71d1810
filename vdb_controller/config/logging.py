"""
Structured logging for the controller process.

Every event carries the controller name, version and the replica's instance
id, so interleaved output from several replicas (one leader, the rest on
standby) can be told apart. Events emitted during a reconcile pass also carry
the VirtualDatabase being reconciled, bound through structlog contextvars.
Production renders JSON lines; other environments render colored console output.
"""
import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator, Optional

import structlog
from structlog.types import EventDict, Processor

from vdb_controller.config.settings import Settings, settings
from vdb_controller.models.resources import ObjectKey

# Chatty client libraries, kept at WARNING regardless of LOG_LEVEL
QUIET_LOGGERS = (
    "uvicorn.access",
    "kubernetes_asyncio",
    "botocore",
    "boto3",
    "urllib3",
)


def controller_context(config: Settings, instance_id: Optional[str] = None) -> Processor:
    """Processor adding controller identity to every event."""

    def add_controller_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict["controller"] = config.app_name
        event_dict["version"] = config.app_version
        if instance_id:
            event_dict.setdefault("instance_id", instance_id)
        return event_dict

    return add_controller_context


def render_object_keys(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Render ObjectKey values as ``namespace/name``."""
    for field, value in event_dict.items():
        if isinstance(value, ObjectKey):
            event_dict[field] = str(value)
    return event_dict


@contextmanager
def reconcile_context(key: ObjectKey) -> Iterator[None]:
    """Tag every event logged inside the block with the VirtualDatabase key."""
    with structlog.contextvars.bound_contextvars(virtualdatabase=key):
        yield


def configure_logging(config: Settings = settings, instance_id: Optional[str] = None) -> None:
    """Configure structlog and the stdlib root logger for the controller."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        controller_context(config, instance_id),
        render_object_keys,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if config.is_production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, config.log_level),
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured structlog logger.

    Args:
        name: Logger name (typically __name__ of the module)
    """
    return structlog.get_logger(name)
