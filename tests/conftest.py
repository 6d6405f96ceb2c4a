import socket
from contextlib import closing
from typing import Callable

import httpx
import pytest

from webflow_proxy.core.config import Settings
from webflow_proxy.main import create_app
from webflow_proxy.models.schemas import RedirectMode

STAGING = "https://site.webflow.io"
PROD = "prod.example.com"


@pytest.fixture
def anyio_backend():
    return "asyncio"


def _free_port() -> int:
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def free_port() -> Callable[[], int]:
    """Callable returning a localhost TCP port nothing is listening on."""
    return _free_port


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    def _make(**overrides) -> Settings:
        values = {"upstream_url": STAGING, "prod_url": PROD, "redirect_mode": RedirectMode.NONE}
        values.update(overrides)
        return Settings(**values)
    return _make


class Upstream:
    """Fake staging origin backed by httpx.MockTransport; records what it received."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


@pytest.fixture
def proxy_app(make_settings):
    """Factory building the proxy app in front of a fake upstream."""

    def _make(handler, **overrides):
        upstream = Upstream(handler)
        upstream_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream), follow_redirects=False)
        return create_app(make_settings(**overrides), client=upstream_client), upstream

    return _make


@pytest.fixture
def proxy_client(proxy_app):
    """Factory building an httpx client wired to the proxy app and a fake upstream."""

    def _make(handler, base_url="http://www.example.com", **overrides):
        app, upstream = proxy_app(handler, **overrides)
        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=base_url)
        return client, upstream

    return _make
