"""
Structured logging for the API and the worker.

Every line carries the service name and pipeline version; lines emitted
while a batch is being ingested also carry its upload and user ids.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

import structlog

from app.config import settings

# Third-party loggers pinned to WARNING regardless of LOG_LEVEL
QUIET_LOGGERS = ("uvicorn.access", "pdfminer", "httpx", "httpcore", "PIL", "rq.worker")


def stamp_service(logger, method_name, event_dict):
    event_dict.setdefault("service", settings.APP_NAME)
    event_dict.setdefault("pipeline_version", settings.PIPELINE_VERSION)
    return event_dict


def setup_logging(level: Optional[str] = None) -> None:
    """Route structlog and stdlib logging through one stdout handler."""
    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        stamp_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    render = structlog.dev.ConsoleRenderer() if settings.DEBUG else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, render],
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.DB_ECHO else logging.WARNING)


@contextmanager
def bound_upload_context(upload_id: str, user_id: Optional[str] = None) -> Iterator[None]:
    """Bind upload/user ids to every log line emitted inside the block."""
    tokens = structlog.contextvars.bind_contextvars(upload_id=upload_id, user_id=user_id)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
