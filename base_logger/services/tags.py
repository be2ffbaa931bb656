"""Template tag resolvers.

Every tag an access log template may contain maps to a pure function
taking a RenderFrame (the per-request context plus the "now" sampled at
render time) and returning the string to insert. Dynamic tags such as
``header:X-Trace`` are dispatched through a separate prefix table.

Tag names follow Echo's logger (``time_rfc3339``, ``user_agent``, ...);
hyphenated spellings (``time-rfc3339``, ``user-agent``) are accepted too.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from functools import partial
from typing import Callable

from werkzeug.exceptions import SecurityError
from werkzeug.wrappers import Request

from base_logger.models.context import RenderContext
from base_logger.utils.colors import Colorer

DEFAULT_TIME_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

REQUEST_ID_HEADER = "X-Request-ID"

_NS_PER_US = 1_000
_NS_PER_MS = 1_000_000
_NS_PER_S = 1_000_000_000
_NS_PER_MIN = 60 * _NS_PER_S
_NS_PER_HOUR = 60 * _NS_PER_MIN


class Tag(str, Enum):
    """Fixed template tags."""

    TIME_UNIX = "time_unix"
    TIME_UNIX_NANO = "time_unix_nano"
    TIME_RFC3339 = "time_rfc3339"
    TIME_RFC3339_NANO = "time_rfc3339_nano"
    TIME_CUSTOM = "time_custom"
    ID = "id"
    REMOTE_IP = "remote_ip"
    HOST = "host"
    URI = "uri"
    METHOD = "method"
    PATH = "path"
    PROTOCOL = "protocol"
    REFERER = "referer"
    USER_AGENT = "user_agent"
    STATUS = "status"
    ERROR = "error"
    LATENCY = "latency"
    LATENCY_HUMAN = "latency_human"
    BYTES_IN = "bytes_in"
    BYTES_OUT = "bytes_out"


@dataclass(frozen=True)
class RenderFrame:
    """A RenderContext pinned to the moment rendering started.

    Attributes:
        context: The request's render context.
        wall_ns: Wall clock at render time, ns since the epoch.
        stop_ns: Monotonic clock at render time, comparable to context.start_ns.
        custom_time_format: strftime format for the ``time_custom`` tag.
        colorer: Presentation layer for the ``status`` tag.
        tz: Timezone for formatted times; None means local time.
    """

    context: RenderContext
    wall_ns: int
    stop_ns: int
    custom_time_format: str = DEFAULT_TIME_FORMAT
    colorer: Colorer = field(default_factory=Colorer)
    tz: tzinfo | None = None

    @property
    def elapsed_ns(self) -> int:
        return max(0, self.stop_ns - self.context.start_ns)

    @property
    def now(self) -> datetime:
        seconds, nanos = divmod(self.wall_ns, _NS_PER_S)
        dt = datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=nanos // _NS_PER_US)
        return dt.astimezone(self.tz)


# ── Formatting helpers ────────────────────────────────────────────────


def format_rfc3339(dt: datetime, nanos: int | None = None) -> str:
    """Format an aware datetime as RFC 3339, optionally with trimmed nanoseconds.

    >>> format_rfc3339(datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc), 120000000)
    '2024-01-02T03:04:05.12Z'
    """
    text = dt.strftime("%Y-%m-%dT%H:%M:%S")
    if nanos:
        text += "." + f"{nanos:09d}".rstrip("0")
    if not dt.utcoffset():
        return text + "Z"
    return text + dt.isoformat(timespec="seconds")[-6:]


def _format_fraction(value: int, unit: int) -> str:
    whole, frac = divmod(value, unit)
    if not frac:
        return str(whole)
    digits = len(str(unit)) - 1
    return f"{whole}.{frac:0{digits}d}".rstrip("0")


def format_duration(ns: int) -> str:
    """Format a nanosecond interval the way Go's time.Duration prints.

    >>> format_duration(1_500_000)
    '1.5ms'
    >>> format_duration(62 * 10**9)
    '1m2s'
    """
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    ns = abs(ns)
    if ns < _NS_PER_US:
        return f"{sign}{ns}ns"
    if ns < _NS_PER_MS:
        return f"{sign}{_format_fraction(ns, _NS_PER_US)}µs"
    if ns < _NS_PER_S:
        return f"{sign}{_format_fraction(ns, _NS_PER_MS)}ms"

    hours, rest = divmod(ns, _NS_PER_HOUR)
    minutes, rest = divmod(rest, _NS_PER_MIN)
    seconds = _format_fraction(rest, _NS_PER_S) + "s"
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}"
    if minutes:
        return f"{sign}{minutes}m{seconds}"
    return sign + seconds


def real_ip(frame: RenderFrame) -> str:
    """Client IP honoring X-Forwarded-For, then X-Real-IP."""
    request = frame.context.request
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real = request.headers.get("X-Real-IP", "")
    if real:
        return real.strip()
    return request.remote_addr or ""


def request_host(request: Request) -> str:
    """The request's Host, or the raw Host header when it is not trusted."""
    try:
        return request.host
    except SecurityError:
        return request.environ.get("HTTP_HOST", "")


def request_uri(frame: RenderFrame) -> str:
    """Raw request target (path plus query string) as the client sent it."""
    request = frame.context.request
    query = request.environ.get("QUERY_STRING", "")
    raw = request.environ.get("REQUEST_URI") or request.environ.get("RAW_URI")
    if raw:
        # Some servers (werkzeug's test client among them) put only the path here.
        if query and "?" not in raw:
            return f"{raw}?{query}"
        return raw
    return f"{request.path}?{query}" if query else request.path


def request_id(frame: RenderFrame) -> str:
    value = frame.context.request.headers.get(REQUEST_ID_HEADER, "")
    if not value:
        value = frame.context.response.headers.get(REQUEST_ID_HEADER, "")
    return value


def error_message(frame: RenderFrame) -> str:
    error = frame.context.error
    if error is None:
        return ""
    # Error text may contain quotes; the template supplies the outer ones.
    return json.dumps(str(error), ensure_ascii=False)[1:-1]


# ── Dispatch tables ───────────────────────────────────────────────────

Resolver = Callable[[RenderFrame], str]

TAG_RESOLVERS: dict[Tag, Resolver] = {
    Tag.TIME_UNIX: lambda f: str(f.wall_ns // _NS_PER_S),
    Tag.TIME_UNIX_NANO: lambda f: str(f.wall_ns),
    Tag.TIME_RFC3339: lambda f: format_rfc3339(f.now),
    Tag.TIME_RFC3339_NANO: lambda f: format_rfc3339(f.now, f.wall_ns % _NS_PER_S),
    Tag.TIME_CUSTOM: lambda f: f.now.strftime(f.custom_time_format),
    Tag.ID: request_id,
    Tag.REMOTE_IP: real_ip,
    Tag.HOST: lambda f: request_host(f.context.request),
    Tag.URI: request_uri,
    Tag.METHOD: lambda f: f.context.request.method,
    Tag.PATH: lambda f: f.context.request.path or "/",
    Tag.PROTOCOL: lambda f: f.context.request.environ.get("SERVER_PROTOCOL", ""),
    Tag.REFERER: lambda f: f.context.request.referrer or "",
    Tag.USER_AGENT: lambda f: f.context.request.headers.get("User-Agent", ""),
    Tag.STATUS: lambda f: f.colorer.status(f.context.response.status_code),
    Tag.ERROR: error_message,
    Tag.LATENCY: lambda f: str(f.elapsed_ns),
    Tag.LATENCY_HUMAN: lambda f: format_duration(f.elapsed_ns),
    Tag.BYTES_IN: lambda f: f.context.request.headers.get("Content-Length") or "0",
    Tag.BYTES_OUT: lambda f: str(f.context.response.bytes_written),
}

PREFIX_RESOLVERS: dict[str, Callable[[RenderFrame, str], str]] = {
    "header:": lambda f, key: f.context.request.headers.get(key, ""),
    "query:": lambda f, key: f.context.request.args.get(key, ""),
    "form:": lambda f, key: f.context.request.form.get(key, ""),
    "cookie:": lambda f, key: f.context.request.cookies.get(key, ""),
}

_TAGS_BY_NAME: dict[str, Tag] = {tag.value: tag for tag in Tag}
_TAGS_BY_NAME.update({tag.value.replace("_", "-"): tag for tag in Tag})


def lookup_resolver(name: str) -> Resolver | None:
    """Find the resolver for a tag name, or None for an unknown tag."""
    for prefix, resolver in PREFIX_RESOLVERS.items():
        if name.startswith(prefix):
            return partial(resolver, key=name[len(prefix):])
    tag = _TAGS_BY_NAME.get(name)
    if tag is None:
        return None
    return TAG_RESOLVERS[tag]
