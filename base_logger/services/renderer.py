"""Access log template renderer.

Compiles the configured ``${tag}`` format once and renders it per request
against an explicitly passed RenderContext.

Usage:
    renderer = TemplateRenderer('{"status":${status},"uri":"${uri}"}\\n')
    line = renderer.render(context)   # b'{"status":404,"uri":"/missing"}\\n'
    renderer.render(None)             # b'{"status":,"uri":""}\\n'
"""
from __future__ import annotations

import time
from datetime import tzinfo
from typing import Callable

import structlog

from base_logger.models.context import RenderContext
from base_logger.services.tags import DEFAULT_TIME_FORMAT, RenderFrame, Resolver, lookup_resolver
from base_logger.services.template import Template, compile_template
from base_logger.utils.colors import Colorer

logger = structlog.get_logger(__name__)


class TemplateRenderer:
    """Renders access log lines from a compiled template.

    The renderer holds only immutable configuration; the per-request state
    always arrives as the ``context`` argument to ``render``.

    Args:
        template: Format string or an already compiled Template.
        custom_time_format: strftime format used by ``${time_custom}``.
        colorer: Presentation layer for ``${status}`` (plain by default).
        tz: Timezone for formatted times; None uses the local zone.
        clock: Wall clock in ns since the epoch.
        timer: Monotonic clock in ns, the same one RenderContext.start_ns uses.

    Raises:
        TemplateSyntaxError: If ``template`` is a malformed format string.
    """

    def __init__(
        self,
        template: str | Template,
        custom_time_format: str = DEFAULT_TIME_FORMAT,
        colorer: Colorer | None = None,
        tz: tzinfo | None = None,
        clock: Callable[[], int] = time.time_ns,
        timer: Callable[[], int] = time.perf_counter_ns,
    ) -> None:
        if isinstance(template, str):
            template = compile_template(template)
        self.template = template
        self.custom_time_format = custom_time_format
        self.colorer = colorer or Colorer()
        self.tz = tz
        self._clock = clock
        self._timer = timer
        self._resolvers: tuple[Resolver | None, ...] = tuple(
            lookup_resolver(tag) for tag in template.tags
        )

    def render(self, context: RenderContext | None) -> bytes:
        """Render one access log line.

        Args:
            context: The request's render context, or None if no request
                has been bound yet (every tag then renders empty).

        Returns:
            The UTF-8 encoded line, exactly as the template lays it out.
        """
        if context is None:
            return "".join(self.template.texts).encode("utf-8")

        frame = RenderFrame(
            context=context,
            wall_ns=self._clock(),
            stop_ns=self._timer(),
            custom_time_format=self.custom_time_format,
            colorer=self.colorer,
            tz=self.tz,
        )
        parts: list[str] = []
        for (text, tag), resolver in zip(self.template.segments(), self._resolvers + (None,)):
            parts.append(text)
            if tag is not None and resolver is not None:
                parts.append(self._resolve(resolver, frame, tag))
        return "".join(parts).encode("utf-8")

    @staticmethod
    def _resolve(resolver: Resolver, frame: RenderFrame, tag: str) -> str:
        try:
            return resolver(frame)
        except Exception as e:
            logger.warning("access_log_tag_failed", tag=tag, error=str(e))
            return ""
