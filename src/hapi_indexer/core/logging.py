"""Logging setup for the indexer process.

Modules keep logging through ``logging.getLogger(__name__)``; records are
rendered by structlog on a single root handler.
"""

import logging
import sys

import structlog
from structlog.types import Processor

# Applied to stdlib records and structlog events alike
SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


def build_formatter(fmt: str = "json") -> structlog.stdlib.ProcessorFormatter:
    """Build the root handler formatter.

    Args:
        fmt: "json" for one JSON object per line, "console" for readable lines

    Returns:
        Formatter rendering records through structlog
    """
    if fmt == "json":
        processors: list[Processor] = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=SHARED_PROCESSORS,
        processors=processors,
    )


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Install a single stdout handler on the root logger.

    Args:
        level: Logging level name
        fmt: "json" for structured output, "console" for plain lines
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(fmt))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
