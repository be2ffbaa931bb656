"""Request ID middleware for log correlation.

Reuses the client's X-Request-ID or generates a UUID, binds it to the
structlog context, and echoes it on the response. The access log's
``${id}`` tag falls back to that response header, so every logged request
carries an id even when the client sent none.

Usage:
    from base_logger.middleware.request_id import init_request_id_middleware
    init_request_id_middleware(app)
"""
from __future__ import annotations

import uuid

import structlog
from flask import Flask, g, request

from base_logger.services.tags import REQUEST_ID_HEADER


def init_request_id_middleware(app: Flask) -> None:
    """Register before/after hooks for request ID tracing.

    Args:
        app: Flask application instance.
    """
    logger = structlog.get_logger(__name__)

    @app.before_request
    def inject_request_id() -> None:
        """Inject request ID into Flask's g object and structlog context."""
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        g.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.path,
        )

        logger.debug("request_started")

    @app.after_request
    def attach_request_id(response):
        """Attach request ID to response headers."""
        response.headers[REQUEST_ID_HEADER] = g.get("request_id", "unknown")
        return response
