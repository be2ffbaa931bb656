"""Global Flask error handlers for consistent JSON error responses.

Every handler records the exception with ``capture_error`` first, so the
access line for the request shows it in ``${error}``, then returns:
    { "success": false, "error": { "message": "...", "code": <int> } }

The access logger only observes; the response is decided here.

Usage:
    from base_logger.middleware.error_handlers import register_error_handlers
    register_error_handlers(app)
"""
from __future__ import annotations

import structlog
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from base_logger.middleware.access_logger import capture_error

logger = structlog.get_logger(__name__)


def _error_response(message: str, code: int):
    """Create a standardized JSON error response.

    Args:
        message: Human-readable error message.
        code: HTTP status code.

    Returns:
        Tuple of (response, status_code).
    """
    return jsonify({
        "success": False,
        "error": {
            "message": message,
            "code": code,
        },
    }), code


def register_error_handlers(app: Flask) -> None:
    """Register global error handlers on the Flask app.

    Args:
        app: Flask application instance.
    """

    @app.errorhandler(HTTPException)
    def handle_http_exception(e: HTTPException):
        """Any werkzeug HTTP error (404, 405, ...)."""
        capture_error(e)
        return _error_response(e.description or "Unknown error", e.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        """Last resort handler for unhandled exceptions."""
        capture_error(e)
        logger.error(
            "unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return _error_response("An unexpected error occurred", 500)
