"""Shared pytest fixtures for the access logger test suite.

Provides reusable fixtures for:
- Settings with a known environment and colors off
- A Flask app wired by create_app() writing access lines to a BytesIO sink
- Test clients on a production host and on localhost
- A factory for RenderContext objects built from werkzeug test environs
"""
import io

import pytest
from flask import abort, request
from werkzeug.test import EnvironBuilder
from werkzeug.wrappers import Request

from base_logger import create_app
from base_logger.config import Settings
from base_logger.models.context import RenderContext, ResponseRecord


@pytest.fixture
def settings():
    """Settings independent of the runner's environment."""
    return Settings(
        _env_file=None,
        APP_ENV="test",
        LOG_LEVEL="WARNING",
        ACCESS_LOG_COLOR="never",
    )


@pytest.fixture
def sink():
    """In-memory access log sink."""
    return io.BytesIO()


@pytest.fixture
def app(settings, sink):
    """Create a Flask application instance with a few extra test routes."""
    app = create_app(settings=settings, access_log_sink=sink)
    app.config["TESTING"] = True

    @app.route("/ok")
    def ok():
        return "ok"

    @app.route("/created", methods=["POST"])
    def created():
        return {"name": request.form.get("name", "")}, 201

    @app.route("/boom")
    def boom():
        raise RuntimeError('bad "input"')

    @app.route("/teapot")
    def teapot():
        abort(418)

    yield app


@pytest.fixture
def client(app):
    """Flask test client for a production-looking host."""
    return app.test_client()


@pytest.fixture
def prod_get(client):
    """GET on http://example.com, fully consumed so the response is finalized."""
    def _get(path, **kwargs):
        return client.get(path, base_url="http://example.com", buffered=True, **kwargs)
    return _get


@pytest.fixture
def make_context():
    """Build a RenderContext from EnvironBuilder arguments."""
    def _make(path="/", status_code=200, response_headers=None, **kwargs):
        kwargs.setdefault("base_url", "http://example.com")
        kwargs.setdefault("environ_base", {"REMOTE_ADDR": "10.1.2.3"})
        environ = EnvironBuilder(path=path, **kwargs).get_environ()
        response = ResponseRecord(status_code=status_code)
        if response_headers:
            response.start(f"{status_code} X", list(response_headers.items()))
        return RenderContext(request=Request(environ), response=response)
    return _make


@pytest.fixture
def sink_lines(sink):
    """Return a callable splitting everything written to the sink into lines."""
    def _lines():
        return [line for line in sink.getvalue().decode("utf-8").split("\n") if line]
    return _lines
