"""Logging configuration using loguru.

Intercepts stdlib logging so that uvicorn, botocore, sqlalchemy, etc. all
flow through loguru with a unified format.

Request-scoped enrichment is done by a ``RequestLogger`` built from an
explicit list of ``ContextExtractor`` strategies.  Each hosting surface
(HTTP request, Lambda-style context, raw provider event) gets the extractors
it needs at construction time; nothing is registered globally.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from loguru import logger

REQUEST_ID_HEADER = "x-request-id"


class _InterceptHandler(logging.Handler):
    """Bridge stdlib logging records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        # Map stdlib level name -> loguru level
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk the call stack so loguru reports the real call-site
        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru as the sole logging sink.

    Call this once at process startup (before uvicorn starts).
    """
    level = level.upper()

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level> {extra}"
        ),
    )

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    # Quiet down noisy libraries
    for name in ("uvicorn.access", "httpx", "httpcore", "botocore", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("Logging initialised (level={})", level)


# ---------------------------------------------------------------------------
# Context extractors
# ---------------------------------------------------------------------------


@runtime_checkable
class ContextExtractor(Protocol):
    """Pull log fields out of whatever object a hosting surface hands us.

    Returns an empty mapping when *source* is not something it understands.
    """

    def extract(self, source: Any) -> dict[str, str]: ...


class RequestIdHeaderExtractor:
    """Reads ``X-Request-ID`` from an object exposing ``.headers`` (Starlette request)."""

    def __init__(self, header: str = REQUEST_ID_HEADER) -> None:
        self._header = header

    def extract(self, source: Any) -> dict[str, str]:
        headers = getattr(source, "headers", None)
        if headers is None:
            return {}
        value = headers.get(self._header)
        return {"request_id": value} if value else {}


class LambdaContextExtractor:
    """Reads ``aws_request_id`` from a Lambda-style invocation context."""

    def extract(self, source: Any) -> dict[str, str]:
        value = getattr(source, "aws_request_id", None)
        return {"request_id": str(value)} if value else {}


class EventRequestIdExtractor:
    """Reads request ids from raw provider event envelopes.

    API Gateway events carry ``requestContext.requestId``; EventBridge
    envelopes carry a top-level ``id``.
    """

    def extract(self, source: Any) -> dict[str, str]:
        if not isinstance(source, Mapping):
            return {}
        ctx = source.get("requestContext")
        if isinstance(ctx, Mapping):
            fields: dict[str, str] = {}
            if ctx.get("requestId"):
                fields["request_id"] = str(ctx["requestId"])
            if ctx.get("connectionId"):
                fields["connection_id"] = str(ctx["connectionId"])
            return fields
        if "detail-type" in source and source.get("id"):
            return {"event_id": str(source["id"])}
        return {}


class RequestLogger:
    """Collects request-scoped log fields from an injected extractor list.

    Extractors run in order; a later extractor never overrides a field an
    earlier one already produced.
    """

    def __init__(self, extractors: Sequence[ContextExtractor] = ()) -> None:
        self._extractors = tuple(extractors)

    def fields(self, *sources: Any) -> dict[str, str]:
        result: dict[str, str] = {}
        for source in sources:
            if source is None:
                continue
            for extractor in self._extractors:
                for key, value in extractor.extract(source).items():
                    result.setdefault(key, value)
        return result


def http_request_logger() -> RequestLogger:
    return RequestLogger([RequestIdHeaderExtractor()])


def event_request_logger() -> RequestLogger:
    return RequestLogger([LambdaContextExtractor(), EventRequestIdExtractor()])
