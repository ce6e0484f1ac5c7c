"""Structured logging setup for the pretranslation pipeline."""

import logging
import sys
from pathlib import Path
from typing import Optional

import structlog

_LEVELS = {-1: logging.WARNING, 0: logging.INFO, 1: logging.DEBUG}


def configure_logging(
    verbosity: int = 0,
    log_file: Optional[Path] = None,
) -> None:
    """Route structlog through stdlib logging.

    Args:
        verbosity: -1=quiet (WARNING), 0=normal (INFO), 1=verbose (DEBUG)
        log_file: Optional path that receives one JSON object per line
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(_LEVELS.get(verbosity, logging.INFO))
    root.addHandler(
        _handler(logging.StreamHandler(sys.stderr), structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    )

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = _handler(
            logging.FileHandler(log_file, encoding="utf-8"), structlog.processors.JSONRenderer()
        )
        file_handler.setLevel(logging.DEBUG)  # file gets everything
        root.addHandler(file_handler)

    for name in ("httpx", "httpcore", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _handler(handler: logging.Handler, renderer: structlog.types.Processor) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    return handler


def bind_document(document_id: str) -> None:
    """Attach ``document_id`` to every log line of the current task."""
    structlog.contextvars.bind_contextvars(document_id=document_id)


def unbind_document() -> None:
    structlog.contextvars.unbind_contextvars("document_id")
