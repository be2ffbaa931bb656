"""Centralized configuration using Pydantic Settings.

Loads configuration from environment variables and `.env` file with
full validation and sensible defaults. The access log template is
compiled during validation, so a malformed template stops the process
before the server starts.

Usage:
    from base_logger.config import get_settings

    settings = get_settings()  # cached singleton
    print(settings.ACCESS_LOG_COLOR)
"""
from __future__ import annotations

import json
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from base_logger.services.tags import DEFAULT_TIME_FORMAT
from base_logger.services.template import compile_template
from base_logger.utils.colors import COLOR_MODES
from base_logger.utils.exceptions import TemplateSyntaxError

# One JSON object per line. "%s" is replaced by the (escaped) APP_ENV.
DEFAULT_ACCESS_LOG_TEMPLATE = (
    '{"time":"${time_rfc3339_nano}","id":"${id}","remote_ip":"${remote_ip}",'
    '"host":"${host}","method":"${method}","uri":"${uri}","user_agent":"${user_agent}",'
    '"status":${status},"error":"${error}","latency":${latency},"latency_human":"${latency_human}"'
    ',"environment":"%s","bytes_in":${bytes_in},"bytes_out":${bytes_out}}'
    "\n"
)

ACCESS_LOG_OUTPUTS = ("stdout", "stderr")


class Settings(BaseSettings):
    """Settings loaded from environment variables / .env file.

    Every field has a default; an empty environment gives a working
    JSON access log on stdout.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # silently ignore unknown env vars
    )

    # ── Application ───────────────────────────────────────────────────
    APP_ENV: str = Field(default="development", description="Deployment environment name, written into each access line")
    FLASK_DEBUG: bool = Field(default=False, description="Enable Flask debug mode")

    # ── Diagnostics logging (structlog) ───────────────────────────────
    LOG_LEVEL: str = Field(default="INFO", description="Logging level (DEBUG/INFO/WARNING/ERROR)")
    LOG_FORMAT: str = Field(default="json", description="Log output format ('json' for prod, 'console' for dev)")

    # ── Access log ────────────────────────────────────────────────────
    ACCESS_LOG_TEMPLATE: str | None = Field(
        default=None,
        description="${tag} format for access lines; defaults to DEFAULT_ACCESS_LOG_TEMPLATE",
    )
    ACCESS_LOG_TIME_FORMAT: str = Field(default=DEFAULT_TIME_FORMAT, description="strftime format for ${time_custom}")
    ACCESS_LOG_COLOR: str = Field(default="auto", description="Color the status field: auto/always/never")
    ACCESS_LOG_OUTPUT: str = Field(default="stdout", description="Access log sink: stdout/stderr")
    ACCESS_LOG_SKIP_PATHS: list[str] = Field(default_factory=list, description="Request paths never logged")

    # ── Validators ────────────────────────────────────────────────────

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """APP_ENV is pasted into the default template as literal text."""
        if "${" in v:
            raise ValueError("APP_ENV must not contain '${'")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate log level."""
        v = v.upper().strip()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}, got '{v}'")
        return v

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        v = v.lower().strip()
        if v not in ("json", "console"):
            raise ValueError("LOG_FORMAT must be 'json' or 'console'")
        return v

    @field_validator("ACCESS_LOG_TEMPLATE")
    @classmethod
    def validate_access_log_template(cls, v: str | None) -> str | None:
        """Fail fast on a template with unbalanced ${ } delimiters."""
        if v is None:
            return v
        try:
            compile_template(v)
        except TemplateSyntaxError as e:
            raise ValueError(f"ACCESS_LOG_TEMPLATE is malformed: {e.message}") from e
        return v

    @field_validator("ACCESS_LOG_COLOR")
    @classmethod
    def validate_access_log_color(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in COLOR_MODES:
            raise ValueError(f"ACCESS_LOG_COLOR must be one of {COLOR_MODES}")
        return v

    @field_validator("ACCESS_LOG_OUTPUT")
    @classmethod
    def validate_access_log_output(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in ACCESS_LOG_OUTPUTS:
            raise ValueError(f"ACCESS_LOG_OUTPUT must be one of {ACCESS_LOG_OUTPUTS}")
        return v

    @property
    def access_log_template(self) -> str:
        """The configured template, or the default JSON line for APP_ENV."""
        if self.ACCESS_LOG_TEMPLATE is not None:
            return self.ACCESS_LOG_TEMPLATE
        return DEFAULT_ACCESS_LOG_TEMPLATE % json.dumps(self.APP_ENV)[1:-1]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance.

    Uses `lru_cache` so the `.env` file is only read once.
    Call this everywhere instead of instantiating Settings directly.
    """
    return Settings()
