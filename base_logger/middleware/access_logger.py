"""Access log middleware with a status/host emission policy.

Wraps a WSGI application. For every call it builds a fresh RenderContext,
runs the wrapped app, and once the response body has been fully sent
(the WSGI iterable is closed) decides whether to write an access line:

    emit when status != 200, or when the Host contains "localhost"

A plain 200 on a real host is the only suppressed case, which keeps
production logs to anomalies while local development sees everything.

Usage:
    from base_logger.middleware.access_logger import BaseLogger
    BaseLogger(app, settings=get_settings())

    # or, for any WSGI app:
    app.wsgi_app = AccessLogMiddleware(app.wsgi_app, TemplateRenderer(fmt), sys.stdout.buffer)
"""
from __future__ import annotations

import sys
from typing import Any, BinaryIO, Callable, Iterable, Iterator

import structlog
from flask import Flask, got_request_exception, has_request_context, request
from werkzeug.wrappers import Request
from werkzeug.wsgi import ClosingIterator

from base_logger.config import Settings, get_settings
from base_logger.models.context import RenderContext, ResponseRecord
from base_logger.services.renderer import TemplateRenderer
from base_logger.services.tags import request_host
from base_logger.utils.colors import Colorer

logger = structlog.get_logger(__name__)

# Where handler errors are parked for the ${error} tag of the same request.
ERROR_ENVIRON_KEY = "base_logger.error"
# Flask's own request object; Flask clears environ["werkzeug.request"] on teardown.
REQUEST_ENVIRON_KEY = "base_logger.request"


def should_emit(status_code: int, host: str) -> bool:
    """Decide whether a finished request gets an access line.

    Args:
        status_code: Final HTTP status of the response.
        host: The request's Host (may include a port).

    Returns:
        False only for status 200 on a host without "localhost" in it.
    """
    return status_code != 200 or "localhost" in host


def capture_error(error: BaseException, environ: dict[str, Any] | None = None) -> None:
    """Record a handler error so the request's access line can show it.

    Error handlers call this before turning the exception into a response.
    Outside a request context (and without an explicit environ) it does
    nothing.
    """
    if environ is None:
        if not has_request_context():
            return
        environ = request.environ
    environ[ERROR_ENVIRON_KEY] = error


def _record_unhandled_exception(sender: Flask, exception: BaseException, **extra: Any) -> None:
    capture_error(exception)


def _keep_request() -> None:
    request.environ[REQUEST_ENVIRON_KEY] = request._get_current_object()


class AccessLogMiddleware:
    """WSGI middleware that renders and writes access lines.

    Args:
        wsgi_app: The WSGI application to wrap.
        renderer: Renderer for the access line template.
        sink: Binary writable the finished lines go to.
        predicate: Emission decision, ``(status_code, host) -> bool``.
        skipper: Optional ``(request) -> bool``; True bypasses logging entirely.
    """

    def __init__(
        self,
        wsgi_app: Callable,
        renderer: TemplateRenderer,
        sink: BinaryIO,
        predicate: Callable[[int, str], bool] = should_emit,
        skipper: Callable[[Request], bool] | None = None,
    ) -> None:
        self.wsgi_app = wsgi_app
        self.renderer = renderer
        self.sink = sink
        self.predicate = predicate
        self.skipper = skipper

    def __call__(self, environ: dict[str, Any], start_response: Callable) -> Iterable[bytes]:
        context = RenderContext(request=Request(environ, populate_request=False))
        if self.skipper is not None and self.skipper(context.request):
            return self.wsgi_app(environ, start_response)

        record = context.response

        def _start_response(status: str, headers: list[tuple[str, str]], exc_info: Any = None):
            record.start(status, headers)
            write = start_response(status, headers, exc_info)

            def counting_write(data: bytes) -> Any:
                record.bytes_written += len(data)
                return write(data)

            return counting_write

        try:
            app_iter = self.wsgi_app(environ, _start_response)
        except Exception as e:
            context.error = e
            if not record.started:
                record.status_code = 500
            self._finalize(context)
            raise

        callbacks: list[Callable[[], Any]] = []
        close = getattr(app_iter, "close", None)
        if close is not None:
            callbacks.append(close)
        callbacks.append(lambda: self._finalize(context))
        return ClosingIterator(self._count_bytes(app_iter, record), callbacks)

    @staticmethod
    def _count_bytes(app_iter: Iterable[bytes], record: ResponseRecord) -> Iterator[bytes]:
        for chunk in app_iter:
            record.bytes_written += len(chunk)
            yield chunk

    def _finalize(self, context: RenderContext) -> None:
        """Apply the emission policy and write the line. Runs once per request."""
        record = context.response
        if record.finalized:
            return
        record.finalized = True

        environ = context.request.environ
        # Flask's request object has already consumed the body and parsed the form.
        context.request = environ.get(REQUEST_ENVIRON_KEY) or context.request
        if context.error is None:
            context.error = environ.get(ERROR_ENVIRON_KEY)

        try:
            if not self.predicate(record.status_code, request_host(context.request)):
                return
        except Exception as e:
            logger.warning("access_log_predicate_failed", error=str(e), error_type=type(e).__name__)
            return

        try:
            line = self.renderer.render(context)
        except Exception as e:
            logger.warning("access_log_render_failed", error=str(e), error_type=type(e).__name__)
            return

        # The response is already sent; nothing raised here may reach the server.
        try:
            self.sink.write(line)
            flush = getattr(self.sink, "flush", None)
            if flush is not None:
                flush()
        except Exception as e:
            logger.warning("access_log_write_failed", error=str(e), error_type=type(e).__name__)


class BaseLogger:
    """Flask extension installing AccessLogMiddleware from Settings.

    Args:
        app: Flask application; if omitted call ``init_app`` later.
        settings: Settings to read the ACCESS_LOG_* fields from.
        sink: Binary writable for access lines; defaults to ACCESS_LOG_OUTPUT.

    Raises:
        TemplateSyntaxError: If the configured template is malformed.
    """

    def __init__(
        self,
        app: Flask | None = None,
        settings: Settings | None = None,
        sink: BinaryIO | None = None,
    ) -> None:
        self.middleware: AccessLogMiddleware | None = None
        if app is not None:
            self.init_app(app, settings=settings, sink=sink)

    def init_app(
        self,
        app: Flask,
        settings: Settings | None = None,
        sink: BinaryIO | None = None,
    ) -> None:
        settings = settings or get_settings()
        if sink is None:
            sink = sys.stderr.buffer if settings.ACCESS_LOG_OUTPUT == "stderr" else sys.stdout.buffer

        renderer = TemplateRenderer(
            settings.access_log_template,
            custom_time_format=settings.ACCESS_LOG_TIME_FORMAT,
            colorer=Colorer.for_sink(sink, settings.ACCESS_LOG_COLOR),
        )

        skipper = None
        skip_paths = frozenset(settings.ACCESS_LOG_SKIP_PATHS)
        if skip_paths:
            skipper = lambda req: req.path in skip_paths  # noqa: E731

        self.middleware = AccessLogMiddleware(app.wsgi_app, renderer, sink, skipper=skipper)
        app.wsgi_app = self.middleware
        app.before_request(_keep_request)
        got_request_exception.connect(_record_unhandled_exception, app)
        app.extensions["base_logger"] = self

        logger.debug("access_logger_installed", output=settings.ACCESS_LOG_OUTPUT, skip_paths=sorted(skip_paths))
