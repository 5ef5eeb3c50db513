"""JSON logging for conversions and the command line."""

from __future__ import annotations

import logging
from typing import IO, Optional

import structlog


def configure_logging(level: int = logging.INFO, stream: Optional[IO[str]] = None) -> None:
    """Route structlog events as JSON lines to ``stream``.

    Soft import failures are logged at warning level, so ``logging.WARNING``
    keeps only data quality problems.

    Parameters
    ----------
    level:
        Minimum level emitted by every ``fhirmap`` logger.
    stream:
        File object receiving the lines. Standard output when omitted; the
        CLI passes standard error so results stay parseable.
    """

    logging.basicConfig(level=level, format="%(message)s", stream=stream)
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
    )
