"""Custom exception hierarchy for the access logger.

All package-specific exceptions inherit from BaseLoggerError, so hosts
can catch configuration problems with a single except clause at startup.

Hierarchy:
    BaseLoggerError (base)
    ├── TemplateSyntaxError : Malformed ${tag} template (fatal at startup)
    └── ConfigurationError  : Invalid sink / color settings
"""
from __future__ import annotations


class BaseLoggerError(Exception):
    """Base exception for the access logger."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)


class TemplateSyntaxError(BaseLoggerError):
    """Raised when an access log template has unbalanced delimiters."""

    def __init__(self, message: str, position: int) -> None:
        self.position = position
        super().__init__(f"{message} (at offset {position})")


class ConfigurationError(BaseLoggerError):
    """Raised when the logger is configured with unusable settings."""
