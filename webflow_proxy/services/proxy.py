"""Reverse-proxy pipeline for the Webflow staging site.

Builds the upstream URL from the raw request target, filters headers in both
directions, buffers request and response bodies, and rewrites HTML so the
staging ``data-wf-domain`` marker carries the production domain.
"""
from __future__ import annotations

from typing import Iterable, Optional

import anyio
import httpx
from fastapi import Request
from prometheus_client import Counter, Histogram
from starlette.requests import ClientDisconnect

from webflow_proxy.core.config import Settings
from webflow_proxy.core.logging import get_logger
from webflow_proxy.models.schemas import HeaderList, OutboundRequest, RelayedResponse
from webflow_proxy.services.rewrite import rewrite_body

log = get_logger("Proxy")

# Connection-management headers that would desynchronize the new request.
REQUEST_BLOCKLIST = frozenset({"host", "connection", "transfer-encoding", "content-length"})
# httpx decodes gzip/deflate/br/zstd on read, so content-encoding no longer applies.
RESPONSE_BLOCKLIST = frozenset({"transfer-encoding", "content-length", "connection", "content-encoding"})

# nginx convention for "client went away before we answered"
CLIENT_CLOSED_REQUEST = 499
DISCONNECT_POLL_S = 0.1

UPSTREAM_LATENCY = Histogram("proxy_upstream_latency_seconds", "Upstream request latency seconds")
UPSTREAM_ERRORS = Counter("proxy_upstream_errors_total", "Failed upstream calls", ["kind"])
HTML_REWRITES = Counter("proxy_html_rewrites_total", "HTML responses passed through the domain rewrite")


class ProxyError(Exception):
    """A request that cannot be proxied; carries the status to answer with."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail


def filter_headers(headers: Iterable[tuple[str, str]], blocked: frozenset[str]) -> HeaderList:
    """Drop ``blocked`` header names (case-insensitive), keeping order and repeats."""
    return [(k, v) for k, v in headers if k.lower() not in blocked]


def header_value(headers: HeaderList, name: str) -> Optional[str]:
    name = name.lower()
    for k, v in headers:
        if k.lower() == name:
            return v
    return None


def build_target_url(origin: str, path: str, query: str = "") -> str:
    """``origin + path + ?query``; the path is used exactly as received."""
    return f"{origin}{path}?{query}" if query else f"{origin}{path}"


def request_target(req: Request) -> tuple[str, str]:
    """Return the still-encoded path and query string of ``req``."""
    raw: Optional[bytes] = req.scope.get("raw_path")
    if raw:
        # some servers leave the query on raw_path
        path = raw.partition(b"?")[0].decode("latin-1")
    else:
        path = req.url.path
    query = req.scope.get("query_string", b"").decode("latin-1")
    return path, query


def build_outbound(method: str, target_url: str, headers: Iterable[tuple[str, str]], body: bytes) -> OutboundRequest:
    return OutboundRequest(
        method=method,
        url=target_url,
        headers=filter_headers(headers, REQUEST_BLOCKLIST),
        content=body or None,
    )


def relay(status_code: int, headers: Iterable[tuple[str, str]], body: bytes, prod_domain: str) -> RelayedResponse:
    """Filter upstream headers and rewrite the body if it is HTML."""
    kept = filter_headers(headers, RESPONSE_BLOCKLIST)
    new_body, rewritten = rewrite_body(body, header_value(kept, "content-type"), prod_domain)
    if rewritten:
        HTML_REWRITES.inc()
    return RelayedResponse(status_code=status_code, headers=kept, body=new_body, rewritten=rewritten)


async def _wait_for_disconnect(req: Request) -> None:
    while not await req.is_disconnected():
        await anyio.sleep(DISCONNECT_POLL_S)


async def _send_unless_disconnected(req: Request, client: httpx.AsyncClient, request: httpx.Request) -> httpx.Response:
    """Send ``request`` upstream; abandon it if the client disconnects first.

    Whichever of the upstream call and the disconnect watcher finishes first
    cancels the other. httpx errors are caught inside the group and re-raised
    here so callers see them unwrapped.
    """
    outcome: dict[str, object] = {}

    async with anyio.create_task_group() as tg:

        async def send() -> None:
            try:
                outcome["response"] = await client.send(request)
            except httpx.HTTPError as e:
                outcome["error"] = e
            tg.cancel_scope.cancel()

        async def watch() -> None:
            await _wait_for_disconnect(req)
            outcome["disconnected"] = True
            tg.cancel_scope.cancel()

        tg.start_soon(send)
        tg.start_soon(watch)

    if "error" in outcome:
        raise outcome["error"]
    if "response" in outcome:
        return outcome["response"]
    raise ProxyError(CLIENT_CLOSED_REQUEST, "Client closed request")


async def call_upstream(req: Request, client: httpx.AsyncClient, outbound: OutboundRequest) -> httpx.Response:
    """Issue ``outbound`` and map transport failures to gateway errors.

    The request is built directly rather than through ``client.build_request``
    so the client's default headers and cookie jar never leak into it.
    """
    try:
        request = httpx.Request(
            outbound.method,
            outbound.url,
            headers=[(k.encode("latin-1"), v.encode("latin-1")) for k, v in outbound.headers],
            content=outbound.content,
            extensions={"timeout": client.timeout.as_dict()},
        )
    except httpx.InvalidURL as e:
        raise ProxyError(400, "Invalid request target") from e

    try:
        with UPSTREAM_LATENCY.time():
            return await _send_unless_disconnected(req, client, request)
    except httpx.TimeoutException as e:
        UPSTREAM_ERRORS.labels(kind="timeout").inc()
        log.warning("Upstream timeout on %s %s: %s", outbound.method, outbound.url, e)
        raise ProxyError(504, "Upstream timed out") from e
    except httpx.HTTPError as e:
        UPSTREAM_ERRORS.labels(kind="transport").inc()
        log.error("Proxy error on %s %s: %s", outbound.method, outbound.url, e)
        raise ProxyError(502, "Upstream unavailable") from e


async def forward(req: Request, client: httpx.AsyncClient, settings: Settings) -> RelayedResponse:
    """Forward ``req`` to the staging origin and return the buffered, rewritten response."""
    path, query = request_target(req)
    target_url = build_target_url(settings.origin, path, query)
    log.info("Proxying %s %s -> %s", req.method, f"{path}?{query}" if query else path, target_url)

    try:
        body = await req.body()
    except ClientDisconnect as e:
        raise ProxyError(400, "Unreadable request body") from e

    outbound = build_outbound(req.method, target_url, req.headers.items(), body)
    upstream = await call_upstream(req, client, outbound)
    raw_headers = [(k.decode("latin-1"), v.decode("latin-1")) for k, v in upstream.headers.raw]
    return relay(upstream.status_code, raw_headers, upstream.content, settings.prod_url)
