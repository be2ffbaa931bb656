"""Tests for the access log middleware and its emission policy."""
import io
import json
import threading
import time
from unittest.mock import MagicMock

import pytest
from werkzeug.test import Client, EnvironBuilder

from base_logger import create_app
from base_logger.config import Settings
from base_logger.middleware.access_logger import (
    AccessLogMiddleware,
    capture_error,
    should_emit,
)
from base_logger.services.renderer import TemplateRenderer


class TestShouldEmit:
    """The emission decision: only a 200 on a real host is suppressed."""

    @pytest.mark.parametrize("status", [201, 204, 301, 304, 400, 404, 418, 500, 503])
    def test_non_200_always_emits(self, status):
        assert should_emit(status, "example.com") is True

    def test_200_on_real_host_is_suppressed(self):
        assert should_emit(200, "example.com") is False

    @pytest.mark.parametrize("host", ["localhost", "localhost:5000", "api.localhost"])
    def test_200_on_localhost_emits(self, host):
        assert should_emit(200, host) is True


# ── Plain WSGI ────────────────────────────────────────────────────────


def wsgi_app(status="201 Created", body=(b"ab", b"cde"), headers=None):
    def app(environ, start_response):
        start_response(status, headers or [("Content-Type", "text/plain")])
        return list(body)
    return app


class TestAccessLogMiddleware:
    """AccessLogMiddleware around a bare WSGI app."""

    def test_writes_line_after_body_is_sent(self):
        sink = io.BytesIO()
        mw = AccessLogMiddleware(wsgi_app(), TemplateRenderer("${status} ${bytes_out}\n"), sink)

        response = Client(mw).get("/", base_url="http://example.com", buffered=True)

        assert response.data == b"abcde"
        assert sink.getvalue() == b"201 5\n"

    def test_suppresses_200_on_real_host(self):
        sink = io.BytesIO()
        mw = AccessLogMiddleware(wsgi_app("200 OK"), TemplateRenderer("${status}\n"), sink)

        Client(mw).get("/", base_url="http://example.com", buffered=True)

        assert sink.getvalue() == b""

    def test_counts_bytes_from_write_callable(self):
        def app(environ, start_response):
            write = start_response("202 Accepted", [])
            write(b"1234")
            return [b"56"]

        sink = io.BytesIO()
        mw = AccessLogMiddleware(app, TemplateRenderer("${bytes_out}"), sink)
        Client(mw).get("/", base_url="http://example.com", buffered=True)

        assert sink.getvalue() == b"6"

    def test_finalizes_exactly_once(self):
        sink = io.BytesIO()
        mw = AccessLogMiddleware(wsgi_app(), TemplateRenderer("${status}\n"), sink)
        environ = EnvironBuilder(path="/", base_url="http://example.com").get_environ()

        app_iter = mw(environ, lambda status, headers, exc_info=None: None)
        assert sink.getvalue() == b""  # not before the body is consumed
        list(app_iter)
        app_iter.close()
        app_iter.close()

        assert sink.getvalue() == b"201\n"

    def test_closes_wrapped_iterable(self):
        closed = []

        class Body(list):
            def close(self):
                closed.append(True)

        def app(environ, start_response):
            start_response("404 Not Found", [])
            return Body([b"x"])

        mw = AccessLogMiddleware(app, TemplateRenderer("${status}"), io.BytesIO())
        Client(mw).get("/", buffered=True)

        assert closed == [True]

    def test_escaping_exception_is_logged_and_reraised(self):
        def app(environ, start_response):
            raise RuntimeError("kaboom")

        sink = io.BytesIO()
        mw = AccessLogMiddleware(app, TemplateRenderer("${status} ${error}"), sink)

        with pytest.raises(RuntimeError, match="kaboom"):
            Client(mw).get("/", base_url="http://example.com", buffered=True)

        assert sink.getvalue() == b"500 kaboom"

    def test_custom_predicate(self):
        sink = io.BytesIO()
        mw = AccessLogMiddleware(
            wsgi_app("200 OK"),
            TemplateRenderer("${status}"),
            sink,
            predicate=lambda status, host: True,
        )
        Client(mw).get("/", base_url="http://example.com", buffered=True)

        assert sink.getvalue() == b"200"

    def test_skipper_bypasses_logging(self):
        sink = io.BytesIO()
        mw = AccessLogMiddleware(
            wsgi_app("404 Not Found"),
            TemplateRenderer("${status}"),
            sink,
            skipper=lambda request: request.path == "/metrics",
        )
        Client(mw).get("/metrics", buffered=True)

        assert sink.getvalue() == b""

    def test_write_failure_does_not_break_response(self):
        sink = MagicMock()
        sink.write.side_effect = OSError("disk full")
        mw = AccessLogMiddleware(wsgi_app(), TemplateRenderer("${status}"), sink)

        response = Client(mw).get("/", buffered=True)

        assert response.status_code == 201
        assert response.data == b"abcde"
        sink.write.assert_called_once()

    def test_text_sink_does_not_break_response(self):
        sink = io.StringIO()
        mw = AccessLogMiddleware(wsgi_app(), TemplateRenderer("${status}"), sink)

        response = Client(mw).get("/", buffered=True)

        assert response.status_code == 201
        assert response.data == b"abcde"
        assert sink.getvalue() == ""

    def test_predicate_failure_does_not_break_response(self):
        def predicate(status, host):
            raise KeyError(host)

        sink = io.BytesIO()
        mw = AccessLogMiddleware(wsgi_app(), TemplateRenderer("${status}"), sink, predicate=predicate)

        response = Client(mw).get("/", buffered=True)

        assert response.status_code == 201
        assert sink.getvalue() == b""

    def test_render_failure_does_not_break_response(self):
        renderer = MagicMock(spec=TemplateRenderer)
        renderer.render.side_effect = RuntimeError("template exploded")
        sink = io.BytesIO()
        mw = AccessLogMiddleware(wsgi_app(), renderer, sink)

        response = Client(mw).get("/", buffered=True)

        assert response.status_code == 201
        assert sink.getvalue() == b""

    def test_error_parked_in_environ_is_rendered(self):
        def app(environ, start_response):
            capture_error(ValueError("parked"), environ)
            start_response("400 Bad Request", [])
            return [b""]

        sink = io.BytesIO()
        mw = AccessLogMiddleware(app, TemplateRenderer("${error}"), sink)
        Client(mw).get("/", buffered=True)

        assert sink.getvalue() == b"parked"

    def test_capture_error_outside_request_is_noop(self):
        capture_error(ValueError("nowhere"))  # must not raise


# ── Flask integration ─────────────────────────────────────────────────


class TestFlaskIntegration:
    """BaseLogger installed by create_app()."""

    def test_not_found_is_logged(self, prod_get, sink_lines):
        response = prod_get("/missing")

        assert response.status_code == 404
        lines = sink_lines()
        assert len(lines) == 1
        assert '"status":404' in lines[0]

    def test_ok_on_real_host_is_not_logged(self, prod_get, sink):
        response = prod_get("/ok")

        assert response.status_code == 200
        assert sink.getvalue() == b""

    def test_ok_on_localhost_is_logged(self, client, sink_lines):
        client.get("/ok", base_url="http://localhost:5000", buffered=True)

        line = json.loads(sink_lines()[0])
        assert line["status"] == 200
        assert line["host"] == "localhost:5000"

    def test_context_fields(self, prod_get, sink_lines):
        prod_get("/context-has-been-set")

        assert '"host":"example.com","method":"GET","uri":"/context-has-been-set"' in sink_lines()[0]

    def test_line_is_json_with_defaults(self, prod_get, sink_lines):
        response = prod_get("/missing", headers={"User-Agent": "pytest"})

        line = json.loads(sink_lines()[0])
        assert line["environment"] == "test"
        assert line["user_agent"] == "pytest"
        assert line["remote_ip"] == "127.0.0.1"
        assert line["bytes_in"] == 0
        assert line["bytes_out"] == len(response.data)
        assert line["error"].startswith("404 Not Found")

    def test_id_comes_from_request_id_middleware(self, prod_get, sink_lines):
        response = prod_get("/missing")

        line = json.loads(sink_lines()[0])
        assert line["id"] == response.headers["X-Request-ID"]
        assert line["id"]

    def test_client_request_id_is_reused(self, prod_get, sink_lines):
        prod_get("/missing", headers={"X-Request-ID": "client-123"})

        assert json.loads(sink_lines()[0])["id"] == "client-123"

    def test_handler_error_is_logged_not_swallowed(self, prod_get, sink_lines):
        response = prod_get("/boom")

        assert response.status_code == 500
        assert response.get_json()["error"]["code"] == 500
        line = json.loads(sink_lines()[0])
        assert line["status"] == 500
        assert line["error"] == 'bad "input"'

    def test_aborted_request(self, prod_get, sink_lines):
        response = prod_get("/teapot")

        assert response.status_code == 418
        assert json.loads(sink_lines()[0])["status"] == 418

    def test_latency_within_measured_interval(self, prod_get, sink_lines):
        before = time.perf_counter_ns()
        prod_get("/missing")
        measured = time.perf_counter_ns() - before

        line = json.loads(sink_lines()[0])
        assert 0 <= line["latency"] <= measured
        assert line["latency_human"].endswith("s")

    def test_form_values_survive_request_teardown(self, client, sink):
        app = client.application
        app.wsgi_app.renderer = TemplateRenderer("${form:name}|${status}")

        response = client.post(
            "/created", data={"name": "ada"}, base_url="http://example.com", buffered=True,
        )

        assert response.status_code == 201
        assert sink.getvalue() == b"ada|201"

    def test_untrusted_host_is_logged(self, app, client, sink_lines):
        app.config["TRUSTED_HOSTS"] = ["example.com"]

        response = client.get("/ok", base_url="http://evil.test", buffered=True)

        assert response.status_code == 400
        line = json.loads(sink_lines()[0])
        assert line["status"] == 400
        assert line["host"] == "evil.test"

    def test_health_is_quiet(self, prod_get, sink):
        response = prod_get("/health")

        assert response.get_json()["access_log"] == "enabled"
        assert sink.getvalue() == b""

    def test_extension_registered(self, app):
        assert "base_logger" in app.extensions
        assert isinstance(app.wsgi_app, AccessLogMiddleware)


class TestConfiguredFlask:
    """Settings-driven behavior of the installed logger."""

    def test_skip_paths(self, settings, sink):
        settings.ACCESS_LOG_SKIP_PATHS = ["/missing"]
        app = create_app(settings=settings, access_log_sink=sink)

        app.test_client().get("/missing", base_url="http://example.com", buffered=True)
        app.test_client().get("/other", base_url="http://example.com", buffered=True)

        assert sink.getvalue().count(b"\n") == 1
        assert b"/other" in sink.getvalue()

    def test_custom_template(self, sink):
        settings = Settings(_env_file=None, ACCESS_LOG_TEMPLATE="${method} ${path} ${status}\n", ACCESS_LOG_COLOR="never")
        app = create_app(settings=settings, access_log_sink=sink)

        app.test_client().delete("/gone", base_url="http://example.com", buffered=True)

        assert sink.getvalue() == b"DELETE /gone 404\n"

    def test_always_color(self, sink):
        settings = Settings(_env_file=None, ACCESS_LOG_TEMPLATE="${status}", ACCESS_LOG_COLOR="always")
        app = create_app(settings=settings, access_log_sink=sink)

        app.test_client().get("/missing", base_url="http://example.com", buffered=True)

        assert sink.getvalue() == b"\x1b[33m404\x1b[0m"


class TestConcurrentRequests:
    """Concurrent requests must not cross-contaminate their access lines."""

    def test_lines_match_their_requests(self, app, sink_lines):
        workers = 12
        barrier = threading.Barrier(workers)

        @app.route("/slow/<int:n>")
        def slow(n):
            barrier.wait(timeout=5)
            time.sleep(0.01 * (workers - n))
            return {"n": n}, 202

        def hit(n):
            app.test_client().get(
                f"/slow/{n}",
                base_url="http://example.com",
                headers={"X-Request-ID": f"req-{n}"},
                buffered=True,
            )

        threads = [threading.Thread(target=hit, args=(n,)) for n in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        lines = [json.loads(line) for line in sink_lines()]
        assert len(lines) == workers
        for line in lines:
            n = line["uri"].rsplit("/", 1)[1]
            assert line["id"] == f"req-{n}"
            assert line["status"] == 202
