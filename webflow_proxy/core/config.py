"""Configuration for the Webflow proxy.

Provides strongly-typed, immutable settings using Pydantic and a loader from
environment variables. Required values have no defaults: a missing staging
URL or production domain is a configuration error.
"""

from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, ValidationError, field_validator

from webflow_proxy.models.schemas import RedirectMode

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class ConfigError(RuntimeError):
    """Raised when the process environment cannot produce valid settings."""


class Settings(BaseModel):
    """Pydantic settings for the proxy. Frozen once built."""
    model_config = ConfigDict(frozen=True)

    # Staging site every request is forwarded to, e.g. https://my-site.webflow.io
    upstream_url: AnyHttpUrl
    # Production domain written into data-wf-domain attributes
    prod_url: str
    redirect_mode: RedirectMode = RedirectMode.NONE
    host: str = "0.0.0.0"
    port: int = 3000
    request_timeout_s: float = 30.0
    metrics_port: Optional[int] = None
    log_level: str = "INFO"

    @field_validator("prod_url")
    @classmethod
    def _prod_url_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("request_timeout_s")
    @classmethod
    def _timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in LOG_LEVELS:
            raise ValueError(f"must be one of {', '.join(LOG_LEVELS)}")
        return v

    @property
    def origin(self) -> str:
        """Upstream base URL without a trailing slash, ready for path concatenation."""
        return str(self.upstream_url).rstrip("/")


def _require(environ: Mapping[str, str], name: str) -> str:
    value = environ.get(name, "").strip()
    if not value:
        raise ConfigError(f"{name} environment variable is not set")
    return value


def _redirect_mode(raw: Optional[str]) -> RedirectMode:
    token = (raw or "").strip().lower()
    if not token:
        return RedirectMode.NONE
    try:
        return RedirectMode(token)
    except ValueError:
        allowed = ", ".join(m.value for m in RedirectMode)
        raise ConfigError(f"REDIRECT_MODE must be one of {allowed}, got {raw!r}") from None


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Load settings from environment variables and return a Settings object."""
    env = os.environ if environ is None else environ
    upstream_url = _require(env, "WEBFLOW_STAGING_URL")
    prod_url = _require(env, "PROD_URL")
    try:
        return Settings(
            upstream_url=upstream_url,
            prod_url=prod_url,
            redirect_mode=_redirect_mode(env.get("REDIRECT_MODE")),
            host=env.get("HOST", "0.0.0.0"),
            port=env.get("PORT", "3000"),
            request_timeout_s=env.get("REQUEST_TIMEOUT_S", "30"),
            metrics_port=env.get("METRICS_PORT") or None,
            log_level=env.get("LOG_LEVEL", "INFO"),
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
