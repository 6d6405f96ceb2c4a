"""API routes for the Webflow proxy.

A single catch-all route: requests on a non-canonical host get a 301 to the
canonical one, everything else is proxied to the staging origin.
"""
from __future__ import annotations

from typing import Optional

import httpx
from fastapi import HTTPException, Request, Response
from fastapi.responses import RedirectResponse
from prometheus_client import Counter
from starlette.types import Receive, Scope, Send

from webflow_proxy.core.config import Settings
from webflow_proxy.core.logging import get_logger
from webflow_proxy.models.schemas import RelayedResponse
from webflow_proxy.services.proxy import ProxyError, forward, request_target
from webflow_proxy.services.redirect import resolve_redirect

log = get_logger("API")

# every path, every method
PROXY_PATH = "/{path:path}"

REQUESTS = Counter("proxy_requests_total", "Total proxied requests", ["method", "status"])
REDIRECTS = Counter("proxy_redirects_total", "Canonical host redirects issued", ["mode"])


def _get_settings_and_client(request: Request) -> tuple[Settings, httpx.AsyncClient]:
    """Return the app-scoped settings and upstream client set up in ``create_app``/lifespan."""
    settings: Settings = request.app.state.settings
    client: Optional[httpx.AsyncClient] = getattr(request.app.state, "client", None)
    if client is None:
        raise RuntimeError("upstream client not initialized; is the app lifespan running?")
    return settings, client


def to_response(relayed: RelayedResponse) -> Response:
    """Turn a relayed upstream response into a Starlette response.

    Headers go on raw so repeated ones such as set-cookie survive; the
    content-length is recomputed from the final body.
    """
    response = Response(content=relayed.body, status_code=relayed.status_code)
    response.raw_headers.extend((k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in relayed.headers)
    return response


async def proxy(request: Request) -> Response:
    """
    Catch-all handler:
      - redirect to the canonical host when REDIRECT_MODE asks for it
      - otherwise forward to the staging origin and relay the response
    """
    settings, client = _get_settings_and_client(request)

    raw_path, query = request_target(request)
    location = resolve_redirect(request.headers.get("host", ""), raw_path, query, settings.redirect_mode)
    if location:
        REDIRECTS.labels(mode=settings.redirect_mode.value).inc()
        log.info("redirect %s -> %s", request.url, location)
        return RedirectResponse(url=location, status_code=301)

    try:
        relayed = await forward(request, client, settings)
    except ProxyError as e:
        REQUESTS.labels(method=request.method, status=str(e.status_code)).inc()
        raise HTTPException(status_code=e.status_code, detail=e.detail) from e

    REQUESTS.labels(method=request.method, status=str(relayed.status_code)).inc()
    return to_response(relayed)


class ProxyEndpoint:
    """ASGI wrapper around ``proxy``.

    Starlette only skips method matching for ASGI-app endpoints, so this is
    what lets PURGE, PROPFIND and other extension methods through.
    """

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = await proxy(Request(scope, receive))
        await response(scope, receive, send)
