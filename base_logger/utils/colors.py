"""ANSI color helpers for the optional status presentation layer.

Colors are decoration only. A disabled Colorer returns the plain value,
so machine consumers of the access log never see escape codes unless
color was explicitly requested or the sink is a terminal.

Usage:
    colorer = Colorer.for_sink(sys.stdout, mode="auto")
    colorer.red(500)  # '\\x1b[31m500\\x1b[0m' on a TTY, '500' otherwise
"""
from __future__ import annotations

from typing import Any

from base_logger.utils.exceptions import ConfigurationError

COLOR_MODES = ("auto", "always", "never")


class Colorer:
    """Wraps values in ANSI color codes when enabled.

    Attributes:
        enabled: Whether escape codes are emitted.
    """

    RED = "\x1b[31m"
    GREEN = "\x1b[32m"
    YELLOW = "\x1b[33m"
    CYAN = "\x1b[36m"
    RESET = "\x1b[0m"

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled

    @classmethod
    def for_sink(cls, sink: Any, mode: str = "auto") -> Colorer:
        """Build a Colorer for a given sink and color mode.

        Args:
            sink: The file-like object access lines are written to.
            mode: 'always', 'never', or 'auto' (enabled only for a TTY sink).

        Raises:
            ConfigurationError: If mode is not a known color mode.
        """
        if mode not in COLOR_MODES:
            raise ConfigurationError(f"Unknown color mode '{mode}', expected one of {COLOR_MODES}")
        if mode == "auto":
            isatty = getattr(sink, "isatty", None)
            try:
                return cls(enabled=bool(isatty and isatty()))
            except ValueError:
                # isatty() on a closed stream
                return cls(enabled=False)
        return cls(enabled=mode == "always")

    def _wrap(self, code: str, value: Any) -> str:
        if not self.enabled:
            return str(value)
        return f"{code}{value}{self.RESET}"

    def red(self, value: Any) -> str:
        return self._wrap(self.RED, value)

    def green(self, value: Any) -> str:
        return self._wrap(self.GREEN, value)

    def yellow(self, value: Any) -> str:
        return self._wrap(self.YELLOW, value)

    def cyan(self, value: Any) -> str:
        return self._wrap(self.CYAN, value)

    def status(self, code: int) -> str:
        """Render an HTTP status code colored by its class."""
        if code >= 500:
            return self.red(code)
        if code >= 400:
            return self.yellow(code)
        if code >= 300:
            return self.cyan(code)
        return self.green(code)
