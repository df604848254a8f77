"""Per-call request context.

Carries the identifiers the services stamp onto records and log lines.  A
transport adapter builds one per inbound call (HTTP request or provider
event) using its own ``RequestLogger``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger as _root_logger

from execrelay.backend.log import RequestLogger


@dataclass
class RequestContext:
    """Identity of one inbound call.

    ``fields`` holds everything the request logger extracted; ``logger`` is a
    loguru logger bound to those fields.
    """

    request_id: str | None = None
    client_ip: str | None = None
    fields: dict[str, str] = field(default_factory=dict)
    logger: Any = field(default=_root_logger, repr=False)

    @classmethod
    def build(cls, request_logger: RequestLogger, *sources: Any, client_ip: str | None = None) -> RequestContext:
        fields = request_logger.fields(*sources)
        bound = _root_logger.bind(**fields)
        return cls(request_id=fields.get("request_id"), client_ip=client_ip, fields=fields, logger=bound)


EMPTY_CONTEXT = RequestContext()
