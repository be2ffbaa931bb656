"""Per-request render context.

A RenderContext is created by the access log middleware for exactly one
WSGI call and handed to TemplateRenderer.render() as an argument. It is
never stored on shared configuration, so concurrent requests cannot see
each other's request/response data.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field

from werkzeug.datastructures import Headers
from werkzeug.wrappers import Request


@dataclass
class ResponseRecord:
    """What the middleware observed of the response.

    Filled in from the WSGI ``start_response`` call and the body iterable.
    """

    status_code: int = 0
    headers: Headers = field(default_factory=Headers)
    bytes_written: int = 0
    started: bool = False
    finalized: bool = False

    def start(self, status: str, headers: list[tuple[str, str]]) -> None:
        self.status_code = int(status.split(" ", 1)[0])
        self.headers = Headers(headers)
        self.started = True


@dataclass
class RenderContext:
    """Snapshot of one request/response cycle used to resolve template tags."""

    request: Request
    response: ResponseRecord = field(default_factory=ResponseRecord)
    start_ns: int = field(default_factory=time.perf_counter_ns)
    error: BaseException | None = None
