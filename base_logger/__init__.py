"""Flask access logger with a template renderer and an emission policy.

The `create_app()` factory wires the access logger into a Flask
application together with the request ID middleware, JSON error handlers
and a health endpoint. Hosts with their own app only need:

    from base_logger import BaseLogger
    BaseLogger(app)
"""
from __future__ import annotations

from typing import BinaryIO

import structlog
from flask import Flask

from base_logger.config import Settings, get_settings
from base_logger.middleware.access_logger import (
    AccessLogMiddleware,
    BaseLogger,
    capture_error,
    should_emit,
)
from base_logger.middleware.error_handlers import register_error_handlers
from base_logger.middleware.request_id import init_request_id_middleware
from base_logger.models.context import RenderContext, ResponseRecord
from base_logger.services.renderer import TemplateRenderer
from base_logger.services.template import Template, compile_template
from base_logger.utils.logger import setup_logging

__all__ = [
    "AccessLogMiddleware",
    "BaseLogger",
    "RenderContext",
    "ResponseRecord",
    "Template",
    "TemplateRenderer",
    "capture_error",
    "compile_template",
    "create_app",
    "should_emit",
]


def create_app(settings: Settings | None = None, access_log_sink: BinaryIO | None = None) -> Flask:
    """Application factory pattern.

    Creates and configures the Flask application with:
    - Pydantic-based configuration loading
    - Structured logging (structlog) for diagnostics
    - Request ID middleware
    - Global error handlers
    - The access logger
    - Blueprint registration (health)

    Args:
        settings: Settings to use; defaults to the cached environment settings.
        access_log_sink: Binary writable for access lines; defaults to ACCESS_LOG_OUTPUT.

    Returns:
        Configured Flask application instance.

    Raises:
        TemplateSyntaxError: If the access log template is malformed.
    """
    settings = settings or get_settings()

    # ── Logging (must be first so all subsequent logs are formatted) ──
    setup_logging(log_level=settings.LOG_LEVEL, log_format=settings.LOG_FORMAT)
    logger = structlog.get_logger(__name__)

    # ── Flask app ─────────────────────────────────────────────────────
    app = Flask(__name__)
    app.config["FLASK_DEBUG"] = settings.FLASK_DEBUG
    app.config["SETTINGS"] = settings

    # ── Middleware ─────────────────────────────────────────────────────
    init_request_id_middleware(app)
    register_error_handlers(app)
    BaseLogger(app, settings=settings, sink=access_log_sink)

    # ── Blueprints ────────────────────────────────────────────────────
    from base_logger.routes.health import health_bp
    app.register_blueprint(health_bp)

    logger.info(
        "app_started",
        env=settings.APP_ENV,
        log_level=settings.LOG_LEVEL,
        access_log_output=settings.ACCESS_LOG_OUTPUT,
    )

    return app
