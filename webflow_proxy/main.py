"""Webflow proxy FastAPI application.

Creates the proxy service, wires the catch-all route behind a permissive CORS
layer, and owns the pooled upstream HTTP client for the app lifetime.
"""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import start_http_server

from webflow_proxy.api.routes import PROXY_PATH, ProxyEndpoint
from webflow_proxy.core.config import ConfigError, Settings, load_settings
from webflow_proxy.core.logging import get_logger, setup_logging

log = get_logger("Main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan.

    Opens the upstream httpx.AsyncClient (HTTP pool) unless one was injected
    through ``create_app`` and keeps it on ``app.state`` for the duration of
    the app.
    """
    if getattr(app.state, "client", None) is not None:
        yield
        return
    settings: Settings = app.state.settings
    async with httpx.AsyncClient(timeout=settings.request_timeout_s, follow_redirects=False) as client:
        app.state.client = client
        try:
            yield
        finally:
            app.state.client = None


def create_app(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """Build the proxy app. ``client`` replaces the lifespan-managed upstream client."""
    app = FastAPI(title="Webflow Proxy", version="0.1.0", lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings
    app.state.client = client
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )
    app.add_route(PROXY_PATH, ProxyEndpoint(), include_in_schema=False)
    return app


def run() -> None:
    """Console entry point: load configuration and serve until killed."""
    load_dotenv()
    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings.log_level)
    if settings.metrics_port is not None:
        start_http_server(settings.metrics_port)
        log.info("Metrics exposed on :%d", settings.metrics_port)

    log.info(
        "Proxy server running on http://%s:%d -> %s (redirect mode: %s)",
        settings.host, settings.port, settings.origin, settings.redirect_mode.value,
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
