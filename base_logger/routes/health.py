"""Health check endpoint.

Exposes GET /health for load balancers and Docker HEALTHCHECK. A 200 on
a production host is never access-logged, so polling it stays quiet.

Response format:
    {
        "status": "healthy",
        "version": "1.0.0",
        "access_log": "enabled" | "disabled"
    }
"""
from __future__ import annotations

from flask import Blueprint, current_app, jsonify

health_bp = Blueprint("health", __name__)

APP_VERSION = "1.0.0"


@health_bp.route("/health", methods=["GET"])
def health_check():
    """Application health check endpoint."""
    installed = "base_logger" in current_app.extensions
    return jsonify({
        "status": "healthy",
        "version": APP_VERSION,
        "access_log": "enabled" if installed else "disabled",
    })
